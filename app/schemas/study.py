"""学习助手相关请求/响应模型：上传文件、处理状态、渲染结果与流式事件。"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResultMode(str, Enum):
    SOLVE = "SOLVE"
    REVIEW = "REVIEW"
    SUMMARY = "SUMMARY"


class FileCollection(str, Enum):
    """三个互斥的文件集合：课程资料、往年试题、待总结文档。"""
    COURSE = "course"
    QUESTIONS = "questions"
    SUMMARY = "summary"


class AppView(str, Enum):
    SOLVER = "solver"
    SUMMARY = "summary"


class SessionPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    STREAMING = "streaming"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class UploadedFile(BaseModel):
    """选择文件时创建，创建后不可变；用户移除或视图重置时销毁。"""
    id: str = Field(..., description="唯一标识，用于移除")
    name: str = Field(..., description="原始文件名")
    type: str = Field(..., description="媒体类型，如 application/pdf")
    data: str = Field(..., description="data:<type>;base64,<payload> 形式的编码内容")

    model_config = ConfigDict(frozen=True)


class UploadedFileInfo(BaseModel):
    """不含文件内容的摘要，用于列表展示。"""
    id: str
    name: str
    type: str
    size: int = 0


class ProcessingResult(BaseModel):
    text: str = ""
    mode: ResultMode
    timestamp: int = Field(..., description="首个片段到达时的毫秒时间戳")


class ProcessingState(BaseModel):
    isLoading: bool = False
    loadingMode: Optional[ResultMode] = None
    error: Optional[str] = None
    result: Optional[ProcessingResult] = None


class SessionSnapshot(BaseModel):
    sessionId: str
    view: AppView
    phase: SessionPhase
    state: ProcessingState
    isStreaming: bool = False
    progress: int = 0
    statusMessage: str = ""
    notice: Optional[str] = Field(None, description="完成后的短暂提示，前端在 noticeSeconds 后关闭")
    noticeSeconds: float = 5.0
    files: dict[str, list[UploadedFileInfo]] = Field(default_factory=dict)
    sourceFileName: str = ""


class StreamEvent(BaseModel):
    """流式处理过程中的单个事件：status / chunk / progress / done / cancelled / error。"""
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class CreateSessionRequest(BaseModel):
    view: AppView = AppView.SOLVER


class ViewChangeRequest(BaseModel):
    view: AppView


class ProcessRequest(BaseModel):
    mode: ResultMode


class UploadResponse(BaseModel):
    added: list[UploadedFileInfo] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list, description="逐个文件的失败原因，互不影响")
    files: list[UploadedFileInfo] = Field(default_factory=list)


# ----- 渲染 -----
class RenderedSpan(BaseModel):
    kind: str = Field(..., description="text / bold / highlight")
    text: str


class RenderedBlock(BaseModel):
    kind: str = Field(..., description="topic / subheading / paragraph / spacer")
    spans: list[RenderedSpan] = Field(default_factory=list)
    text: str = ""


class RenderResponse(BaseModel):
    mode: Optional[ResultMode] = None
    isStreaming: bool = False
    blocks: list[RenderedBlock] = Field(default_factory=list)
    html: str = ""
    plainText: str = ""
