"""API 请求/响应 Pydantic 模型。按模块组织，路由从本包或子模块导入。"""
from app.schemas.health import HealthResponse
from app.schemas.study import (
    AppView,
    CreateSessionRequest,
    FileCollection,
    ProcessingResult,
    ProcessingState,
    ProcessRequest,
    RenderedBlock,
    RenderedSpan,
    RenderResponse,
    ResultMode,
    SessionPhase,
    SessionSnapshot,
    StreamEvent,
    UploadedFile,
    UploadedFileInfo,
    UploadResponse,
    ViewChangeRequest,
)

__all__ = [
    "HealthResponse",
    "AppView",
    "CreateSessionRequest",
    "FileCollection",
    "ProcessingResult",
    "ProcessingState",
    "ProcessRequest",
    "RenderedBlock",
    "RenderedSpan",
    "RenderResponse",
    "ResultMode",
    "SessionPhase",
    "SessionSnapshot",
    "StreamEvent",
    "UploadedFile",
    "UploadedFileInfo",
    "UploadResponse",
    "ViewChangeRequest",
]
