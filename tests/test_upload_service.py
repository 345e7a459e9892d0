import asyncio
import base64
import io

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from app.core.config import Settings
from app.core.errors import UnsupportedFileError
from app.schemas.study import FileCollection
from app.services import upload_service
from app.services.upload_service import (
    FileStore,
    collect_uploads,
    decode_upload,
    encode_upload,
    file_info,
)
from conftest import make_file


def _upload(name, content, content_type=None):
    headers = Headers({"content-type": content_type}) if content_type else None
    return UploadFile(file=io.BytesIO(content), filename=name, headers=headers)


def test_encode_upload_keeps_name_and_type():
    f = encode_upload("notes.pdf", "application/pdf", b"%PDF-1.4 hello")
    assert f.name == "notes.pdf"
    assert f.type == "application/pdf"
    assert f.data.startswith("data:application/pdf;base64,")
    assert base64.b64decode(f.data.split(",", 1)[1]) == b"%PDF-1.4 hello"
    assert decode_upload(f) == b"%PDF-1.4 hello"


def test_encode_upload_generates_fresh_ids():
    ids = {encode_upload("a.txt", "text/plain", b"x").id for _ in range(20)}
    assert len(ids) == 20


def test_encode_upload_guesses_missing_type():
    assert encode_upload("photo.png", None, b"\x89PNG").type == "image/png"
    assert encode_upload("notes.txt", "application/octet-stream", b"hi").type == "text/plain"
    pptx = encode_upload("slides.pptx", "", b"PK")
    assert pptx.type == upload_service.PPTX_TYPE


def test_encode_upload_rejects_unsupported_and_empty():
    with pytest.raises(UnsupportedFileError):
        encode_upload("setup.exe", "application/x-msdownload", b"MZ")
    with pytest.raises(UnsupportedFileError):
        encode_upload("empty.pdf", "application/pdf", b"")


def test_encode_upload_rejects_oversize(monkeypatch):
    monkeypatch.setattr(upload_service, "settings", Settings(max_upload_mb=0))
    with pytest.raises(UnsupportedFileError):
        encode_upload("big.pdf", "application/pdf", b"0123")


def test_file_info_reports_decoded_size():
    f = encode_upload("a.txt", "text/plain", b"hello world")
    info = file_info(f)
    assert info.size == len(b"hello world")
    assert info.name == "a.txt"


def test_collect_uploads_each_file_independent():
    files = [
        _upload("notes.pdf", b"%PDF-1.4", "application/pdf"),
        _upload("virus.exe", b"MZ", "application/x-msdownload"),
        _upload("q.txt", b"Q1", "text/plain"),
    ]
    added, errors = asyncio.run(collect_uploads(files))
    assert [f.name for f in added] == ["notes.pdf", "q.txt"]
    assert len(errors) == 1 and "virus.exe" in errors[0]


def test_file_store_collections():
    store = FileStore()
    a, b = make_file("a.pdf"), make_file("b.pdf")
    store.add(FileCollection.COURSE, [a])
    store.add(FileCollection.COURSE, [b])
    assert [f.name for f in store.get(FileCollection.COURSE)] == ["a.pdf", "b.pdf"]
    assert store.get(FileCollection.QUESTIONS) == []

    store.add(FileCollection.SUMMARY, [a])
    store.add(FileCollection.SUMMARY, [b])
    assert [f.name for f in store.get(FileCollection.SUMMARY)] == ["b.pdf"]


def test_file_store_remove_by_id():
    store = FileStore()
    a, b = make_file("a.pdf"), make_file("b.pdf")
    store.add(FileCollection.QUESTIONS, [a, b])
    assert store.remove(FileCollection.QUESTIONS, a.id) is True
    assert [f.name for f in store.get(FileCollection.QUESTIONS)] == ["b.pdf"]
    # 不存在的 id 不做任何事
    assert store.remove(FileCollection.QUESTIONS, "missing") is False
    assert [f.name for f in store.get(FileCollection.QUESTIONS)] == ["b.pdf"]

    store.clear()
    assert all(not v for v in store.summary().values())
