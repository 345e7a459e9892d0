"""结果导出：分页 PDF 或原样纯文本。"""
import asyncio
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from app.api.deps import get_session
from app.services.export_service import export_filename, export_pdf, export_text
from app.services.study_controller import StudySession

logger = logging.getLogger(__name__)
router = APIRouter()

MEDIA_TYPES = {"pdf": "application/pdf", "txt": "text/plain; charset=utf-8"}


@router.get("/{session_id}/export")
async def export_result(
    format: str = Query("pdf", pattern="^(pdf|txt)$", description="pdf 或 txt"),
    author: str = Query("", max_length=120, description="页脚与标题区显示的作者名"),
    session: StudySession = Depends(get_session),
):
    """
    导出当前结果。生成中或尚无结果时返回 409。
    文件名 = 来源文件名（去扩展名）+ 模式后缀。
    """
    result = session.state.result
    if result is None:
        raise HTTPException(status_code=409, detail="Nothing to export yet")
    if session.is_streaming:
        raise HTTPException(status_code=409, detail="Generation still in progress")

    source_name = session.source_file_name()
    filename = export_filename(source_name, result.mode, format)
    if format == "pdf":
        content = await asyncio.to_thread(
            export_pdf,
            result.text,
            mode=result.mode,
            source_name=source_name,
            author=author,
        )
    else:
        content = export_text(result.text)
    logger.info(
        "[export] session=%s format=%s file=%s bytes=%d", session.id, format, filename, len(content)
    )
    # RFC 5987: 允许非 ASCII 文件名
    headers = {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}
    return Response(content=content, media_type=MEDIA_TYPES[format], headers=headers)
