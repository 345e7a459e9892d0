"""API 依赖项：会话表与当前会话。"""
from fastapi import Depends, HTTPException

from app.core.errors import SessionNotFoundError
from app.services.study_controller import SessionRegistry, StudySession, registry


def get_registry() -> SessionRegistry:
    return registry


def get_session(
    session_id: str,
    sessions: SessionRegistry = Depends(get_registry),
) -> StudySession:
    """按路径中的 session_id 取会话，不存在返回 404。"""
    try:
        return sessions.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="session not found")
