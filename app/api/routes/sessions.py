"""学习会话：创建/查询/删除、切换视图、上传与移除文件、流式处理、取消与重置、渲染。"""
import json
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from app.api.deps import get_registry, get_session
from app.core.errors import RequestValidationError
from app.schemas.study import (
    CreateSessionRequest,
    FileCollection,
    ProcessRequest,
    RenderResponse,
    SessionSnapshot,
    UploadResponse,
    ViewChangeRequest,
)
from app.services.render_service import render_blocks, render_html, strip_markup
from app.services.study_controller import SessionRegistry, StudySession
from app.services.upload_service import collect_uploads, file_info

logger = logging.getLogger(__name__)
router = APIRouter()


def _sse_frame(*, event: str, data: str) -> bytes:
    """
    生成一条 SSE 帧（bytes）。

    - 以空行分隔事件，统一使用 CRLF
    - data 允许多行，但每行必须以 `data:` 前缀
    """
    event = (event or "").strip() or "message"
    data = (data or "").replace("\r\n", "\n").replace("\r", "\n")
    out_lines: list[str] = [f"event: {event}"]
    out_lines.extend(f"data: {line}" for line in data.split("\n"))
    return ("\r\n".join(out_lines) + "\r\n\r\n").encode("utf-8")


@router.post("", response_model=SessionSnapshot, status_code=201)
async def create_session(
    body: Optional[CreateSessionRequest] = Body(None),
    sessions: SessionRegistry = Depends(get_registry),
):
    session = sessions.create((body or CreateSessionRequest()).view)
    return session.snapshot()


@router.get("/{session_id}", response_model=SessionSnapshot)
async def get_session_state(session: StudySession = Depends(get_session)):
    return session.snapshot()


@router.delete("/{session_id}", status_code=204)
async def delete_session(
    session: StudySession = Depends(get_session),
    sessions: SessionRegistry = Depends(get_registry),
):
    """删除会话，同时取消进行中的生成请求。"""
    sessions.drop(session.id)


@router.put("/{session_id}/view", response_model=SessionSnapshot)
async def change_view(body: ViewChangeRequest, session: StudySession = Depends(get_session)):
    """切换顶层视图（解题 / 总结），总是先完整重置。"""
    return session.change_view(body.view)


@router.post("/{session_id}/files/{collection}", response_model=UploadResponse)
async def upload_files(
    collection: FileCollection,
    files: list[UploadFile] = File(...),
    session: StudySession = Depends(get_session),
):
    """
    上传文件到指定集合（course / questions / summary）。
    每个文件独立成功或失败，失败原因在 errors 中逐个返回；summary 集合会被新上传替换。
    """
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    added, errors = await collect_uploads(files)
    current = session.add_files(collection, added)
    logger.info(
        "[upload] session=%s collection=%s added=%d failed=%d",
        session.id, collection.value, len(added), len(errors),
    )
    return UploadResponse(
        added=[file_info(f) for f in added],
        errors=errors,
        files=[file_info(f) for f in current],
    )


@router.delete("/{session_id}/files/{collection}/{file_id}", response_model=SessionSnapshot)
async def remove_file(
    collection: FileCollection,
    file_id: str,
    session: StudySession = Depends(get_session),
):
    """按 id 移除文件；id 不存在时不做任何事。"""
    session.remove_file(collection, file_id)
    return session.snapshot()


@router.post("/{session_id}/process")
async def process(body: ProcessRequest, session: StudySession = Depends(get_session)):
    """
    流式生成学习材料，响应为 text/event-stream。

    事件：status（加载文案）、chunk（新片段与进度）、done（完成，附最终状态）、
    cancelled（被取消）、error（配置或服务错误）。所需文件缺失时直接返回 400，不发起任何请求。
    """
    try:
        session.validate(body.mode)
    except RequestValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    async def gen() -> AsyncIterator[bytes]:
        events = session.process(body.mode)
        try:
            async for ev in events:
                yield _sse_frame(event=ev.event, data=json.dumps(ev.data, ensure_ascii=False))
        except Exception as e:
            # 流式响应中途无法再改状态码，用 SSE error 事件通知
            logger.exception("[process] 事件流异常 session=%s: %s", session.id, e)
            yield _sse_frame(
                event="error",
                data=json.dumps({"kind": "internal", "message": str(e)}, ensure_ascii=False),
            )
        finally:
            await events.aclose()

    return StreamingResponse(
        gen(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )


@router.post("/{session_id}/cancel", response_model=SessionSnapshot)
async def cancel(session: StudySession = Depends(get_session)):
    """用户取消：无片段时重置为空闲，已有片段时保留部分结果。"""
    return session.cancel()


@router.post("/{session_id}/reset", response_model=SessionSnapshot)
async def reset(session: StudySession = Depends(get_session)):
    return session.reset()


@router.get("/{session_id}/render", response_model=RenderResponse)
async def render(session: StudySession = Depends(get_session)):
    """把当前结果渲染为结构化块与 HTML 片段。"""
    result = session.state.result
    if result is None:
        return RenderResponse(isStreaming=session.is_streaming)
    return RenderResponse(
        mode=result.mode,
        isStreaming=session.is_streaming,
        blocks=render_blocks(result.text),
        html=render_html(result.text),
        plainText=strip_markup(result.text),
    )
