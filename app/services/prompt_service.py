"""
组装发给生成服务的指令：模式相关的系统提示 + 有序内容片段（分节标记、文件、任务指令）。

模式到模板的映射集中在 MODE_TEMPLATES，一处分发，避免到处写 if/else。
调用方必须先调用 validate_request，校验不通过的输入不会到达 build_generation_request。
"""
import io
import logging
from dataclasses import dataclass, field
from typing import Any

from app.core.config import Settings, settings as default_settings
from app.core.errors import RequestValidationError, UnsupportedFileError
from app.schemas.study import ResultMode, UploadedFile
from app.services.upload_service import DOCX_TYPE, PPTX_TYPE, decode_upload

logger = logging.getLogger(__name__)

FORMATTING_RULES = (
    "CRITICAL FORMATTING RULE: NEVER use hashtags (#). "
    "For headers, use hierarchical numbering (1.0, 1.1). "
    "Start every new chapter on its own line beginning with 'TOPIC:'. "
    "Use double asterisks (e.g., **important text**) to BOLD key points, names, titles, years, "
    "specific events, and critical terms. "
    "Wrap the single most exam-critical phrase of each section in double equals signs "
    "(e.g., ==must remember==) to HIGHLIGHT it. "
    "Visual emphasis is mandatory."
)


@dataclass(frozen=True)
class ModeTemplate:
    role: str
    primary_label: str
    secondary_label: str | None
    directive: str
    title: str
    file_suffix: str
    fallback_source: str


MODE_TEMPLATES: dict[ResultMode, ModeTemplate] = {
    ResultMode.SOLVE: ModeTemplate(
        role=(
            "You are an Intelligent Exam Solver. Solve questions based on the provided material "
            "with maximum detail and deep academic reasoning. "
            "BOLD all key terms, years, names, and specific answers."
        ),
        primary_label="--- COURSE MATERIAL ---",
        secondary_label="--- PAST QUESTIONS ---",
        directive="Solve all questions in depth. BOLD key years, names, and concepts. NO hashtags.",
        title="Intelligent Solution",
        file_suffix="_Solutions",
        fallback_source="AIEngine_Output",
    ),
    ResultMode.REVIEW: ModeTemplate(
        role=(
            "You are a FlashCard Doc Generator (FlashDoc). Provide EXHAUSTIVE coverage. "
            "Generate many small, direct Q&A pairs. BOLD every key term and direct answer using **."
        ),
        primary_label="--- SOURCE MATERIAL ---",
        secondary_label=None,
        directive="Analyze this material and generate a REVIEW mode response. NO hashtags. Use ** for bolding.",
        title="FlashDoc Study Pack",
        file_suffix="_FlashDoc",
        fallback_source="FlashDoc",
    ),
    ResultMode.SUMMARY: ModeTemplate(
        role=(
            "You are an Expert Academic Simplifier. Provide Deep Definition, Contextual Explanation, "
            "Features, and Types. BOLD key concepts throughout."
        ),
        primary_label="--- SOURCE MATERIAL ---",
        secondary_label=None,
        directive="Analyze this material and generate a SUMMARY mode response. NO hashtags. Use ** for bolding.",
        title="Detailed Summary",
        file_suffix="_Summary",
        fallback_source="Summary",
    ),
}

# 校验失败时给用户看的提示
_MISSING_INPUT_MESSAGES = {
    ResultMode.SUMMARY: "Upload a document to summarize.",
    ResultMode.SOLVE: "Course material and past questions are required.",
    ResultMode.REVIEW: "Upload course material for FlashDoc.",
}


@dataclass
class GenerationRequest:
    mode: ResultMode
    model: str
    system_instruction: str
    parts: list[dict[str, Any]] = field(default_factory=list)
    temperature: float = 0.1

    def messages(self) -> list[dict[str, Any]]:
        """转为 OpenAI 兼容的 messages：系统提示 + 一条包含全部片段的 user 消息。"""
        return [
            {"role": "system", "content": self.system_instruction},
            {"role": "user", "content": self.parts},
        ]


def validate_request(
    mode: ResultMode,
    primary: list[UploadedFile],
    secondary: list[UploadedFile],
) -> None:
    """
    检查所需文件是否齐全，不满足时抛出 RequestValidationError。
    - SUMMARY：至少 1 个主文件，且不能有辅助文件
    - SOLVE：至少 1 个课程资料 + 至少 1 份往年试题
    - REVIEW：至少 1 个课程资料（辅助文件忽略）
    """
    if not primary:
        raise RequestValidationError(_MISSING_INPUT_MESSAGES[mode])
    if mode == ResultMode.SOLVE and not secondary:
        raise RequestValidationError(_MISSING_INPUT_MESSAGES[mode])
    if mode == ResultMode.SUMMARY and secondary:
        raise RequestValidationError("Summary mode takes a single set of documents only.")


def _decode_text(content_bytes: bytes) -> str:
    # 常见编码顺序：UTF-8 -> GBK/GB18030 -> Big5 -> Latin-1（兜底）
    for enc in ("utf-8", "gbk", "gb18030", "big5", "latin-1"):
        try:
            return content_bytes.decode(enc)
        except (UnicodeDecodeError, LookupError):
            continue
    return content_bytes.decode("utf-8", errors="replace")


def _load_pptx_text(data: bytes) -> str:
    from pptx import Presentation

    prs = Presentation(io.BytesIO(data))
    texts = []
    for slide in prs.slides:
        for shape in slide.shapes:
            if hasattr(shape, "text"):
                texts.append(shape.text)
    return "\n".join(texts)


def _load_docx_text(data: bytes) -> str:
    import docx

    document = docx.Document(io.BytesIO(data))
    return "\n".join(p.text for p in document.paragraphs)


def _extract_document_text(file: UploadedFile, loader) -> str:
    """Office 文档转文本；文件损坏或格式不符时抛出 UnsupportedFileError，由控制器作为终止错误报告。"""
    try:
        return loader(decode_upload(file))
    except UnsupportedFileError:
        raise
    except Exception as e:
        logger.warning("[prompt] 文档解析失败 %s: %s", file.name, e)
        raise UnsupportedFileError(f"{file.name}: could not read document content") from e


def file_to_part(file: UploadedFile) -> dict[str, Any]:
    """把一个上传文件转为内容片段：图片走 image_url，文本/Office 文档转文本，其余（PDF）走 file。"""
    media_type = file.type.lower()
    if media_type.startswith("image/"):
        return {"type": "image_url", "image_url": {"url": file.data}}
    if media_type.startswith("text/"):
        text = _decode_text(decode_upload(file))
        return {"type": "text", "text": f"[{file.name}]\n{text}"}
    if media_type == DOCX_TYPE:
        return {"type": "text", "text": f"[{file.name}]\n{_extract_document_text(file, _load_docx_text)}"}
    if media_type == PPTX_TYPE:
        return {"type": "text", "text": f"[{file.name}]\n{_extract_document_text(file, _load_pptx_text)}"}
    return {"type": "file", "file": {"filename": file.name, "file_data": file.data}}


def system_instruction_for(mode: ResultMode) -> str:
    return f"{FORMATTING_RULES} {MODE_TEMPLATES[mode].role}"


def build_generation_request(
    mode: ResultMode,
    primary: list[UploadedFile],
    secondary: list[UploadedFile],
    settings: Settings | None = None,
) -> GenerationRequest:
    """按模式组装：分节标记、主文件、[辅助分节标记、辅助文件]、任务指令。"""
    cfg = settings or default_settings
    template = MODE_TEMPLATES[mode]
    parts: list[dict[str, Any]] = [{"type": "text", "text": template.primary_label}]
    parts.extend(file_to_part(f) for f in primary)
    if template.secondary_label is not None:
        parts.append({"type": "text", "text": template.secondary_label})
        parts.extend(file_to_part(f) for f in secondary)
    parts.append({"type": "text", "text": template.directive})
    return GenerationRequest(
        mode=mode,
        model=cfg.model_for(mode),
        system_instruction=system_instruction_for(mode),
        parts=parts,
        temperature=cfg.llm_temperature,
    )
