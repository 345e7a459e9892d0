"""
学习会话控制器：模式选择、校验、加载/进度、错误与重置的状态机。

Idle -> (校验) -> Loading -> Streaming -> Complete -> (reset) -> Idle
Loading / Streaming 可被取消：尚无片段时整体重置为 Idle；已有片段时保留部分结果，只停止流式指示。

会话的 ProcessingState / ProcessingResult 只由本模块修改，渲染层只读。
同一会话同时最多一个生成请求；发起新请求前先取消旧请求，取消句柄每次替换、不共享。
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from typing import Any, AsyncIterator, Callable

from app.core.cancellation import CancellationToken
from app.core.config import Settings, settings as default_settings
from app.core.errors import (
    ConfigurationError,
    RequestValidationError,
    SessionNotFoundError,
    StudyAppError,
    UnsupportedFileError,
)
from app.schemas.study import (
    AppView,
    FileCollection,
    ProcessingResult,
    ProcessingState,
    ResultMode,
    SessionPhase,
    SessionSnapshot,
    StreamEvent,
    UploadedFile,
)
from app.services.llm_service import stream_generation
from app.services.prompt_service import MODE_TEMPLATES, validate_request
from app.services.render_service import IncrementalRenderer
from app.services.upload_service import FileStore

logger = logging.getLogger(__name__)

StreamFactory = Callable[..., AsyncIterator[str]]

LOADING_MESSAGES = [
    "Scanning documents for key terms...",
    "Extracting important names and dates...",
    "Deep-analyzing core concepts...",
    "Formatting for high recall...",
    "Applying bold emphasis to key points...",
    "Synthesizing your academic guide...",
    "Exhaustively mapping all topics...",
    "Creating concise flash-recall points...",
    "Polishing deep academic solutions...",
    "Finalizing document structure...",
]
IDLE_STATUS = "Initializing AI..."
PREPARING_STATUS = "Preparing your analysis engine..."
COMPLETE_STATUS = "Knowledge Synthesized Successfully!"
COMPLETE_NOTICE = "Academic Guide Synthesized with High Detail."
EMPTY_RESULT_ERROR = "The model returned no content. Please try again."

PROGRESS_START = 5
PROGRESS_FIRST_FRAGMENT = 30
PROGRESS_CAP = 99
ROTATE_BELOW = 90


def streaming_progress(chunk_count: int) -> int:
    """已收到 chunk_count 个片段时的进度：从 30 起步，最多 99，结束时才置 100。"""
    if chunk_count <= 1:
        return PROGRESS_FIRST_FRAGMENT
    return min(PROGRESS_CAP, PROGRESS_FIRST_FRAGMENT + chunk_count // 5)


async def _discard(task: asyncio.Future) -> None:
    if not task.done():
        task.cancel()
    try:
        await task
    except (asyncio.CancelledError, StopAsyncIteration):
        pass
    except Exception as e:
        logger.debug("[process] 丢弃的任务以异常结束: %s", e)


class StudySession:
    def __init__(
        self,
        session_id: str | None = None,
        view: AppView = AppView.SOLVER,
        *,
        settings: Settings | None = None,
        stream_factory: StreamFactory | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.view = view
        self.files = FileStore()
        self.settings = settings or default_settings
        self._stream_factory = stream_factory or stream_generation
        self._rng = rng or random.Random()
        self._token: CancellationToken | None = None
        self._renderer = IncrementalRenderer()
        self._reset_state()

    # ---------- 状态 ----------

    def _reset_state(self) -> None:
        self.state = ProcessingState()
        self.phase = SessionPhase.IDLE
        self.is_streaming = False
        self.progress = 0
        self.status_message = IDLE_STATUS
        self.notice: str | None = None
        self._renderer.reset()

    @property
    def in_flight(self) -> bool:
        return self._token is not None

    def _inputs_for(self, mode: ResultMode) -> tuple[list[UploadedFile], list[UploadedFile]]:
        if mode == ResultMode.SUMMARY:
            return self.files.get(FileCollection.SUMMARY), []
        if mode == ResultMode.REVIEW:
            return self.files.get(FileCollection.COURSE), []
        return self.files.get(FileCollection.COURSE), self.files.get(FileCollection.QUESTIONS)

    def source_file_name(self) -> str:
        """导出时展示的来源文件名，按结果模式取对应集合的第一个文件。"""
        result = self.state.result
        mode = result.mode if result else ResultMode.SOLVE
        if mode == ResultMode.SUMMARY:
            files = self.files.get(FileCollection.SUMMARY)
        elif mode == ResultMode.REVIEW:
            files = self.files.get(FileCollection.COURSE)
        else:
            files = self.files.get(FileCollection.QUESTIONS)
        return files[0].name if files else MODE_TEMPLATES[mode].fallback_source

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            sessionId=self.id,
            view=self.view,
            phase=self.phase,
            state=self.state,
            isStreaming=self.is_streaming,
            progress=self.progress,
            statusMessage=self.status_message,
            notice=self.notice,
            noticeSeconds=self.settings.notice_seconds,
            files=self.files.summary(),
            sourceFileName=self.source_file_name(),
        )

    # ---------- 文件 ----------

    def add_files(self, collection: FileCollection, files: list[UploadedFile]) -> list[UploadedFile]:
        return self.files.add(collection, files)

    def remove_file(self, collection: FileCollection, file_id: str) -> bool:
        return self.files.remove(collection, file_id)

    # ---------- 校验 / 取消 / 重置 ----------

    def validate(self, mode: ResultMode) -> None:
        """
        同步校验，失败时抛出 RequestValidationError，不发起网络请求。
        校验错误不改动已有状态（阶段、进度、结果）：只有在空闲且没有结果时才写入 state.error，
        否则错误只通过事件或 HTTP 400 告知，结果与错误不会同时存在。
        """
        primary, secondary = self._inputs_for(mode)
        try:
            validate_request(mode, primary, secondary)
        except RequestValidationError as e:
            logger.info("[process] 校验未通过 session=%s mode=%s: %s", self.id, mode.value, e)
            if not self.in_flight and self.state.result is None:
                self.state = self.state.model_copy(update={"error": str(e)})
            raise

    def _cancel_token(self) -> bool:
        token, self._token = self._token, None
        if token is None:
            return False
        token.cancel()
        return True

    def cancel(self) -> SessionSnapshot:
        """
        用户取消：尚无片段则整体重置为 Idle（无错误、无结果）；
        已有片段则保留已累积的文本，清除加载态并停止流式指示。
        """
        if not self._cancel_token():
            return self.snapshot()
        self.is_streaming = False
        if self.state.result is None:
            logger.info("[process] 首个片段前取消，重置会话 session=%s", self.id)
            self._reset_state()
        else:
            logger.info(
                "[process] 流式中取消，保留部分结果 session=%s len=%d",
                self.id, len(self.state.result.text),
            )
            self.state = self.state.model_copy(update={"isLoading": False, "loadingMode": None})
            self.phase = SessionPhase.CANCELLED
        return self.snapshot()

    def reset(self) -> SessionSnapshot:
        """显式重置：取消进行中的请求，状态回到 Idle；已上传文件保留。"""
        self._cancel_token()
        self._reset_state()
        return self.snapshot()

    def change_view(self, view: AppView) -> SessionSnapshot:
        """切换顶层视图前总是先完整重置，并清空该视图下的上传文件。"""
        self.reset()
        self.files.clear()
        self.view = view
        return self.snapshot()

    # ---------- 处理 ----------

    def _event(self, name: str, **data: Any) -> StreamEvent:
        data.setdefault("phase", self.phase.value)
        data.setdefault("progress", self.progress)
        return StreamEvent(event=name, data=data)

    def _append(self, mode: ResultMode, fragment: str, chunk_count: int) -> None:
        if self.state.result is None:
            self.state = ProcessingState(
                isLoading=False,
                loadingMode=None,
                error=None,
                result=ProcessingResult(
                    text=fragment, mode=mode, timestamp=int(time.time() * 1000)
                ),
            )
            self.phase = SessionPhase.STREAMING
        else:
            self.state.result.text += fragment
        self.progress = streaming_progress(chunk_count)

    def _fail(self, message: str) -> None:
        self.state = ProcessingState(isLoading=False, loadingMode=None, error=message, result=None)
        self.phase = SessionPhase.IDLE
        self.is_streaming = False
        self._renderer.reset()

    async def process(self, mode: ResultMode) -> AsyncIterator[StreamEvent]:
        """
        执行一次生成并以事件流的形式报告进度：
        status（加载文案）/ chunk（新片段）/ done（正常结束）/ cancelled（用户取消）/ error（校验、配置或服务错误）。
        迭代方提前关闭事件流（如客户端断开）视为取消。
        """
        try:
            self.validate(mode)
        except RequestValidationError as e:
            yield self._event("error", kind="validation", message=str(e))
            return

        self._cancel_token()
        token = CancellationToken()
        self._token = token
        primary, secondary = self._inputs_for(mode)

        self._renderer.reset()
        self.state = ProcessingState(isLoading=True, loadingMode=mode, error=None, result=None)
        self.phase = SessionPhase.LOADING
        self.is_streaming = True
        self.progress = PROGRESS_START
        self.status_message = PREPARING_STATUS
        self.notice = None
        logger.info("[process] 开始 session=%s mode=%s", self.id, mode.value)
        yield self._event("status", message=self.status_message, mode=mode.value)

        stream = self._stream_factory(primary, secondary, mode, token, settings=self.settings)
        cancel_wait = asyncio.ensure_future(token.wait())
        next_task: asyncio.Future | None = None
        chunk_count = 0
        finished = False
        try:
            while not token.cancelled:
                next_task = asyncio.ensure_future(stream.__anext__())
                while True:
                    waiting_first = chunk_count == 0 and self.progress < ROTATE_BELOW
                    timeout = self.settings.status_rotate_seconds if waiting_first else None
                    done, _ = await asyncio.wait(
                        {next_task, cancel_wait},
                        timeout=timeout,
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    if done:
                        break
                    self.status_message = self._rng.choice(LOADING_MESSAGES)
                    yield self._event("status", message=self.status_message)
                if next_task not in done:
                    break
                try:
                    fragment = next_task.result()
                except StopAsyncIteration:
                    finished = True
                    break
                finally:
                    next_task = None
                if token.cancelled:
                    break
                chunk_count += 1
                self._append(mode, fragment, chunk_count)
                new_blocks = self._renderer.feed(fragment)
                yield self._event(
                    "chunk",
                    text=fragment,
                    chunks=chunk_count,
                    blocks=[b.model_dump() for b in new_blocks],
                )
        except StudyAppError as e:
            finished = True
            if token.cancelled:
                yield self._event("cancelled", snapshot=self.snapshot().model_dump(mode="json"))
                return
            if isinstance(e, ConfigurationError):
                kind = "configuration"
            elif isinstance(e, UnsupportedFileError):
                kind = "file"
            else:
                kind = "generation"
            logger.warning("[process] 失败 session=%s mode=%s kind=%s: %s", self.id, mode.value, kind, e)
            if self._token is token:
                self._token = None
                self._fail(str(e))
            yield self._event("error", kind=kind, message=str(e))
            return
        except Exception as e:
            finished = True
            if token.cancelled:
                yield self._event("cancelled", snapshot=self.snapshot().model_dump(mode="json"))
                return
            logger.exception("[process] 未预期的错误 session=%s mode=%s: %s", self.id, mode.value, e)
            message = str(e) or type(e).__name__
            if self._token is token:
                self._token = None
                self._fail(message)
            yield self._event("error", kind="internal", message=message)
            return
        finally:
            if next_task is not None:
                await _discard(next_task)
            await _discard(cancel_wait)
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
            if not finished and not token.cancelled and self._token is token:
                # 迭代方提前关闭：按用户取消处理
                logger.info("[process] 事件流被提前关闭，取消请求 session=%s", self.id)
                self.cancel()

        if token.cancelled or self._token is not token:
            yield self._event("cancelled", snapshot=self.snapshot().model_dump(mode="json"))
            return

        self._token = None
        if self.state.result is None:
            logger.warning("[process] 生成结束但没有任何内容 session=%s mode=%s", self.id, mode.value)
            self._fail(EMPTY_RESULT_ERROR)
            yield self._event("error", kind="generation", message=EMPTY_RESULT_ERROR)
            return

        self.progress = 100
        self.status_message = COMPLETE_STATUS
        self.is_streaming = False
        self.phase = SessionPhase.COMPLETE
        self.notice = COMPLETE_NOTICE
        logger.info(
            "[process] 完成 session=%s mode=%s fragments=%d len=%d",
            self.id, mode.value, chunk_count, len(self.state.result.text),
        )
        yield self._event("done", snapshot=self.snapshot().model_dump(mode="json"))


class SessionRegistry:
    """进程内会话表，不做持久化。"""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        stream_factory: StreamFactory | None = None,
    ) -> None:
        self._sessions: dict[str, StudySession] = {}
        self._settings = settings
        self._stream_factory = stream_factory

    def create(self, view: AppView = AppView.SOLVER) -> StudySession:
        session = StudySession(
            view=view, settings=self._settings, stream_factory=self._stream_factory
        )
        self._sessions[session.id] = session
        logger.info("[session] 创建会话 %s view=%s", session.id, view.value)
        return session

    def get(self, session_id: str) -> StudySession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"session {session_id} not found")
        return session

    def drop(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.reset()
            logger.info("[session] 删除会话 %s", session_id)

    def __len__(self) -> int:
        return len(self._sessions)


registry = SessionRegistry()
