"""
把累积的纯文本结果转为结构化展示。

行级规则（按优先级）：
1. 空行 -> spacer，只占垂直间距
2. 以 "TOPIC:" 开头 -> 章节标记
3. 以分级编号开头（1.2、2.1.3）-> 小标题，即使行内含有 **加粗**
4. 其余 -> 正文段落

行内规则与行级规则互相独立：**A** 加粗，==B== 高亮；剩余的 #、落单的 *、落单的 == 一律去掉，不原样显示。
"""
import html
import re

from app.schemas.study import RenderedBlock, RenderedSpan

TOPIC_PREFIX = "TOPIC:"
SUBHEADING_RE = re.compile(r"^\d+(\.\d+)+")
_INLINE_RE = re.compile(r"(\*\*.+?\*\*|==.+?==)")

BLOCK_TOPIC = "topic"
BLOCK_SUBHEADING = "subheading"
BLOCK_PARAGRAPH = "paragraph"
BLOCK_SPACER = "spacer"


def strip_markup(text: str) -> str:
    """去掉所有标记字符，得到可见纯文本。"""
    return text.replace("#", "").replace("*", "").replace("==", "")


def _heading_source(line: str) -> str:
    return line.strip().lstrip("#").strip()


def classify_line(line: str) -> str:
    source = _heading_source(line)
    if not source:
        return BLOCK_SPACER
    if source.startswith(TOPIC_PREFIX):
        return BLOCK_TOPIC
    if SUBHEADING_RE.match(source):
        return BLOCK_SUBHEADING
    return BLOCK_PARAGRAPH


def parse_inline(text: str) -> list[RenderedSpan]:
    spans: list[RenderedSpan] = []
    for part in _INLINE_RE.split(text):
        if not part:
            continue
        if len(part) >= 4 and part.startswith("**") and part.endswith("**"):
            kind, inner = "bold", part[2:-2]
        elif len(part) >= 4 and part.startswith("==") and part.endswith("=="):
            kind, inner = "highlight", part[2:-2]
        else:
            kind, inner = "text", part
        visible = strip_markup(inner)
        if visible:
            spans.append(RenderedSpan(kind=kind, text=visible))
    return spans


def render_line(line: str) -> RenderedBlock:
    kind = classify_line(line)
    if kind == BLOCK_SPACER:
        return RenderedBlock(kind=kind)
    spans = parse_inline(_heading_source(line))
    return RenderedBlock(kind=kind, spans=spans, text="".join(s.text for s in spans))


def render_blocks(text: str) -> list[RenderedBlock]:
    if not text:
        return []
    return [render_line(line) for line in text.split("\n")]


def _spans_html(spans: list[RenderedSpan]) -> str:
    out = []
    for span in spans:
        escaped = html.escape(span.text)
        if span.kind == "bold":
            out.append(f"<strong>{escaped}</strong>")
        elif span.kind == "highlight":
            out.append(f"<mark>{escaped}</mark>")
        else:
            out.append(escaped)
    return "".join(out)


def block_html(block: RenderedBlock) -> str:
    if block.kind == BLOCK_SPACER:
        return '<div class="spacer"></div>'
    inner = _spans_html(block.spans)
    if block.kind == BLOCK_TOPIC:
        return f'<div class="topic-badge">{inner}</div>'
    if block.kind == BLOCK_SUBHEADING:
        return f'<h3 class="subheading">{inner}</h3>'
    return f"<p>{inner}</p>"


def render_html(text: str) -> str:
    return "\n".join(block_html(b) for b in render_blocks(text))


class IncrementalRenderer:
    """
    流式增量渲染：已以换行结束的行渲染一次后缓存，只有最后一行（可能还在增长）每次重渲染。
    任意时刻 blocks() 都等于 render_blocks(已累积全文)。
    """

    def __init__(self) -> None:
        self._done: list[RenderedBlock] = []
        self._tail = ""

    def feed(self, fragment: str) -> list[RenderedBlock]:
        """追加一个片段，返回本次新完成的行。"""
        if not fragment:
            return []
        *complete, self._tail = (self._tail + fragment).split("\n")
        finished = [render_line(line) for line in complete]
        self._done.extend(finished)
        return finished

    def blocks(self) -> list[RenderedBlock]:
        if not self._done and not self._tail:
            return []
        return self._done + [render_line(self._tail)]

    def reset(self) -> None:
        self._done = []
        self._tail = ""
