"""上传收集：把用户选择的文件编码为 data URL，按集合保存，支持按 id 移除。"""
import asyncio
import base64
import binascii
import logging
import mimetypes
import uuid
from pathlib import Path

from fastapi import UploadFile

from app.core.config import settings
from app.core.errors import UnsupportedFileError
from app.schemas.study import FileCollection, UploadedFile, UploadedFileInfo

logger = logging.getLogger(__name__)

DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PPTX_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"

ALLOWED_EXTENSIONS = {
    ".pdf", ".txt", ".md", ".docx", ".pptx",
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp",
}
_ALLOWED_TYPES = {"application/pdf", DOCX_TYPE, PPTX_TYPE}


def _new_file_id() -> str:
    return uuid.uuid4().hex[:12]


def _resolve_media_type(name: str, content_type: str | None) -> str:
    """优先使用上传时给出的类型；缺失或为泛型时按文件名推断。"""
    ct = (content_type or "").split(";")[0].strip().lower()
    if ct and ct != "application/octet-stream":
        return ct
    guessed, _ = mimetypes.guess_type(name)
    if guessed:
        return guessed
    suffix = Path(name).suffix.lower()
    if suffix == ".docx":
        return DOCX_TYPE
    if suffix == ".pptx":
        return PPTX_TYPE
    if suffix == ".md":
        return "text/markdown"
    return "application/octet-stream"


def _is_allowed(name: str, media_type: str) -> bool:
    if media_type.startswith("image/") or media_type.startswith("text/"):
        return True
    if media_type in _ALLOWED_TYPES:
        return True
    return Path(name).suffix.lower() in ALLOWED_EXTENSIONS


def encode_upload(name: str, content_type: str | None, data: bytes) -> UploadedFile:
    """
    将单个文件编码为 UploadedFile：新 id、保留原文件名与媒体类型，内容为 base64 data URL。
    类型不支持、为空或超出大小限制时抛出 UnsupportedFileError。
    """
    filename = (name or "").strip() or "upload"
    media_type = _resolve_media_type(filename, content_type)
    if not _is_allowed(filename, media_type):
        raise UnsupportedFileError(
            f"{filename}: unsupported file type. Allowed: PDF, text, images, .docx, .pptx"
        )
    if not data:
        raise UnsupportedFileError(f"{filename}: file is empty")
    limit = settings.max_upload_mb * 1024 * 1024
    if len(data) > limit:
        raise UnsupportedFileError(f"{filename}: file exceeds {settings.max_upload_mb}MB")
    payload = base64.b64encode(data).decode("ascii")
    return UploadedFile(
        id=_new_file_id(),
        name=filename,
        type=media_type,
        data=f"data:{media_type};base64,{payload}",
    )


def decode_upload(file: UploadedFile) -> bytes:
    """从 data URL 取回原始字节。"""
    _, _, payload = file.data.partition(",")
    try:
        return base64.b64decode(payload or file.data)
    except (binascii.Error, ValueError) as e:
        raise UnsupportedFileError(f"{file.name}: corrupted file content") from e


def file_info(file: UploadedFile) -> UploadedFileInfo:
    _, _, payload = file.data.partition(",")
    padding = payload.count("=")
    size = max(0, len(payload) * 3 // 4 - padding)
    return UploadedFileInfo(id=file.id, name=file.name, type=file.type, size=size)


async def collect_uploads(files: list[UploadFile]) -> tuple[list[UploadedFile], list[str]]:
    """
    逐个读取并编码上传文件，每个文件独立成功或失败，不做整体原子添加。
    返回 (成功的文件列表, 失败原因列表)。
    """
    added: list[UploadedFile] = []
    errors: list[str] = []
    for upload in files:
        name = upload.filename or "upload"
        try:
            data = await upload.read()
            encoded = await asyncio.to_thread(encode_upload, name, upload.content_type, data)
        except UnsupportedFileError as e:
            logger.info("[upload] 拒绝文件 %s: %s", name, e)
            errors.append(str(e))
            continue
        except OSError as e:
            logger.warning("[upload] 读取文件失败 %s: %s", name, e)
            errors.append(f"{name}: could not read file")
            continue
        added.append(encoded)
    return added, errors


class FileStore:
    """单个会话内的三个文件集合。summary 集合每次添加都会替换原有内容（单文档总结）。"""

    def __init__(self) -> None:
        self._files: dict[FileCollection, list[UploadedFile]] = {c: [] for c in FileCollection}

    def get(self, collection: FileCollection) -> list[UploadedFile]:
        return list(self._files[collection])

    def add(self, collection: FileCollection, files: list[UploadedFile]) -> list[UploadedFile]:
        if collection == FileCollection.SUMMARY and files:
            self._files[collection] = list(files)
        else:
            self._files[collection].extend(files)
        return self.get(collection)

    def remove(self, collection: FileCollection, file_id: str) -> bool:
        """按 id 移除；id 不存在时什么也不做，返回 False。"""
        before = self._files[collection]
        after = [f for f in before if f.id != file_id]
        self._files[collection] = after
        return len(after) != len(before)

    def clear(self) -> None:
        for c in FileCollection:
            self._files[c] = []

    def summary(self) -> dict[str, list[UploadedFileInfo]]:
        return {c.value: [file_info(f) for f in self._files[c]] for c in FileCollection}
