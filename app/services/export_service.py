"""
结果导出：分页 PDF（reportlab）与纯文本。

PDF 分两步：layout_pdf 只做排版（自动换行、游标推进、分页、页脚），得到 PdfPage 列表；
render_pdf 再把排版结果画到 canvas 上。行分类与行内 **加粗** / ==高亮== 规则与页面渲染一致。
"""
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from app.core.config import settings
from app.schemas.study import ResultMode
from app.services.prompt_service import MODE_TEMPLATES
from app.services.render_service import (
    BLOCK_PARAGRAPH,
    BLOCK_SPACER,
    classify_line,
    parse_inline,
)

logger = logging.getLogger(__name__)

MARGIN = 20 * mm
FOOTER_BAND = 30 * mm
TOP_MARGIN = 25 * mm  # 续页起始游标
LINE_HEIGHT = 6 * mm
BLANK_LINE_GAP = 4 * mm
HEADING_GAP = 2 * mm

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
ACCENT = (7 / 255, 188 / 255, 12 / 255)
BODY_COLOR = (40 / 255, 40 / 255, 40 / 255)
MUTED = (100 / 255, 100 / 255, 100 / 255)
HIGHLIGHT_FILL = (1.0, 0.93, 0.45)
DEFAULT_AUTHOR = "Academic User"


@dataclass
class PdfRun:
    text: str
    x: float
    y: float
    font: str = FONT
    size: float = 10
    color: tuple[float, float, float] = BODY_COLOR
    highlight: bool = False

    @property
    def width(self) -> float:
        return stringWidth(self.text, self.font, self.size)


@dataclass
class PdfPage:
    number: int
    runs: list[PdfRun] = field(default_factory=list)
    rules: list[tuple[float, float, float, float]] = field(default_factory=list)
    footer: list[PdfRun] = field(default_factory=list)

    def text(self) -> str:
        return "\n".join(r.text for r in self.runs)


# 一个“词”可能由多个样式片段组成，如 **bold**ly
_Piece = tuple[str, str]  # (text, span kind)


def _words(spans) -> list[list[_Piece]]:
    words: list[list[_Piece]] = []
    current: list[_Piece] = []
    for span in spans:
        for token in re.split(r"(\s+)", span.text):
            if not token:
                continue
            if token.isspace():
                if current:
                    words.append(current)
                    current = []
                continue
            current.append((token, span.kind))
    if current:
        words.append(current)
    return words


class _Layout:
    def __init__(self, page_size, author: str) -> None:
        self.page_width, self.page_height = page_size
        self.content_width = self.page_width - MARGIN * 2
        self.author = author
        self.pages: list[PdfPage] = [PdfPage(number=1)]
        self.cursor_y = TOP_MARGIN

    @property
    def page(self) -> PdfPage:
        return self.pages[-1]

    def _y(self, cursor: float) -> float:
        # 游标自上而下，reportlab 原点在左下角
        return self.page_height - cursor

    def _finish_page(self) -> None:
        y = self._y(self.page_height - 15 * mm)
        size = 8
        page = self.page
        page.rules.append((MARGIN, y + 4 * mm, self.page_width - MARGIN, y + 4 * mm))
        page.footer = [
            PdfRun(settings.export_attribution, MARGIN, y, FONT, size, MUTED),
            PdfRun(f"Author: {self.author}", self.page_width / 2 - 20 * mm, y, FONT, size, MUTED),
        ]
        label = f"Page {page.number}"
        page.footer.append(
            PdfRun(label, self.page_width - MARGIN - stringWidth(label, FONT, size), y, FONT, size, MUTED)
        )

    def _break_if_needed(self) -> None:
        if self.cursor_y > self.page_height - FOOTER_BAND:
            self._finish_page()
            self.pages.append(PdfPage(number=len(self.pages) + 1))
            self.cursor_y = TOP_MARGIN

    def add_text(self, text: str, cursor: float, font: str, size: float, color) -> None:
        self.page.runs.append(PdfRun(text, MARGIN, self._y(cursor), font, size, color))

    def add_rule(self, cursor: float) -> None:
        y = self._y(cursor)
        self.page.rules.append((MARGIN, y, self.page_width - MARGIN, y))

    def wrap(self, words: list[list[_Piece]], base_font: str, size: float) -> list[list[list[_Piece]]]:
        """按内容宽度折行；单个词超宽时独占一行、允许溢出，绝不在词内断开。"""
        space = stringWidth(" ", base_font, size)
        lines: list[list[list[_Piece]]] = []
        current: list[list[_Piece]] = []
        width = 0.0
        for word in words:
            w = sum(stringWidth(t, self._font(kind, base_font), size) for t, kind in word)
            if current and width + space + w > self.content_width:
                lines.append(current)
                current, width = [], 0.0
            width = w if not current else width + space + w
            current.append(word)
        if current:
            lines.append(current)
        return lines

    @staticmethod
    def _font(kind: str, base_font: str) -> str:
        return FONT_BOLD if kind == "bold" else base_font

    def place_line(self, line: list[list[_Piece]], base_font: str, size: float, color) -> None:
        self._break_if_needed()
        y = self._y(self.cursor_y)
        x = MARGIN
        space = stringWidth(" ", base_font, size)
        for i, word in enumerate(line):
            if i:
                x += space
            for text, kind in word:
                run = PdfRun(
                    text, x, y, self._font(kind, base_font), size,
                    ACCENT if kind == "bold" and base_font == FONT else color,
                    highlight=kind == "highlight",
                )
                self.page.runs.append(run)
                x += run.width
        self.cursor_y += LINE_HEIGHT

    def finish(self) -> list[PdfPage]:
        self._finish_page()
        return self.pages


def layout_pdf(
    text: str,
    *,
    mode: ResultMode,
    source_name: str,
    author: str = "",
    generated_at: datetime | None = None,
    page_size=A4,
) -> list[PdfPage]:
    """排版导出文档：首页标题区 + 正文；每页在内容排定后追加页脚（署名与页码）。"""
    author = (author or "").strip() or DEFAULT_AUTHOR
    generated_at = generated_at or datetime.now()
    layout = _Layout(page_size, author)

    layout.add_text(f"{settings.product_name}: Knowledge Synthesis", 20 * mm, FONT_BOLD, 18, ACCENT)
    layout.add_text(MODE_TEMPLATES[mode].title, 27 * mm, FONT_BOLD, 12, BODY_COLOR)
    layout.add_text(f"Author: {author} | Source: {source_name}", 34 * mm, FONT, 10, MUTED)
    layout.add_text(f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}", 40 * mm, FONT, 10, MUTED)
    layout.add_rule(44 * mm)
    layout.cursor_y = 54 * mm

    for raw in text.split("\n"):
        kind = classify_line(raw)
        if kind == BLOCK_SPACER:
            layout.cursor_y += BLANK_LINE_GAP
            continue
        if kind == BLOCK_PARAGRAPH:
            base_font, size, color = FONT, 10, BODY_COLOR
        else:
            base_font, size, color = FONT_BOLD, 12, ACCENT
            layout.cursor_y += HEADING_GAP
        words = _words(parse_inline(raw.strip().lstrip("#").strip()))
        for line in layout.wrap(words, base_font, size):
            layout.place_line(line, base_font, size, color)
        if kind != BLOCK_PARAGRAPH:
            layout.cursor_y += HEADING_GAP

    return layout.finish()


def render_pdf(
    pages: list[PdfPage],
    page_size=A4,
    *,
    title: str = "",
    author: str = "",
) -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=page_size)
    if title:
        c.setTitle(title)
    if author:
        c.setAuthor(author)
    for page in pages:
        for run in page.runs:
            if run.highlight:
                c.setFillColorRGB(*HIGHLIGHT_FILL)
                c.rect(run.x - 1, run.y - 2, run.width + 2, run.size + 2, stroke=0, fill=1)
        c.setStrokeColorRGB(230 / 255, 230 / 255, 230 / 255)
        for x1, y1, x2, y2 in page.rules:
            c.line(x1, y1, x2, y2)
        for run in page.runs + page.footer:
            c.setFont(run.font, run.size)
            c.setFillColorRGB(*run.color)
            c.drawString(run.x, run.y, run.text)
        c.showPage()
    c.save()
    buffer.seek(0)
    return buffer.getvalue()


def export_pdf(
    text: str,
    *,
    mode: ResultMode,
    source_name: str,
    author: str = "",
    generated_at: datetime | None = None,
) -> bytes:
    pages = layout_pdf(
        text, mode=mode, source_name=source_name, author=author, generated_at=generated_at
    )
    logger.info("[export] PDF 排版完成 mode=%s pages=%d", mode.value, len(pages))
    return render_pdf(
        pages,
        title=f"{settings.product_name} - {MODE_TEMPLATES[mode].title}",
        author=(author or "").strip() or DEFAULT_AUTHOR,
    )


def export_text(text: str) -> bytes:
    """纯文本导出：原样保存累积文本，不解释任何标记。"""
    return text.encode("utf-8")


def _safe_filename(name: str, max_len: int = 180) -> str:
    s = str(name or "").strip()
    s = re.sub(r"\s+", "_", s)
    s = re.sub(r'[\\/:"*?<>|]+', "_", s)
    return s[:max_len]


def export_filename(source_name: str, mode: ResultMode, extension: str) -> str:
    """源文件名（第一个点之前）+ 模式后缀 + 扩展名。"""
    template = MODE_TEMPLATES[mode]
    base = _safe_filename((source_name or "").split(".")[0]) or template.fallback_source
    return f"{base}{template.file_suffix}.{extension.lstrip('.')}"
