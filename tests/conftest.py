import asyncio
import base64

import pytest

from app.core.config import Settings
from app.schemas.study import UploadedFile


@pytest.fixture
def test_settings() -> Settings:
    return Settings(api_key="test-key", status_rotate_seconds=0.01, notice_seconds=5.0)


def make_file(name: str, media_type: str = "application/pdf", content: bytes = b"%PDF-1.4 demo") -> UploadedFile:
    payload = base64.b64encode(content).decode("ascii")
    return UploadedFile(
        id=f"id-{name}",
        name=name,
        type=media_type,
        data=f"data:{media_type};base64,{payload}",
    )


class FakeStream:
    """可记录调用的假生成流：按顺序吐出片段，可在首个片段前等待、在结尾抛错或一直挂起。"""

    def __init__(self, fragments, *, first_delay=0.0, error=None, hang_after=False):
        self.fragments = list(fragments)
        self.first_delay = first_delay
        self.error = error
        self.hang_after = hang_after
        self.calls = []

    async def __call__(self, primary, secondary, mode, token, *, settings=None):
        self.calls.append(
            {"primary": [f.name for f in primary], "secondary": [f.name for f in secondary], "mode": mode}
        )
        if self.first_delay:
            await asyncio.sleep(self.first_delay)
        for fragment in self.fragments:
            if token.cancelled:
                return
            yield fragment
        if self.error is not None:
            raise self.error
        if self.hang_after:
            await asyncio.sleep(30)


@pytest.fixture
def fake_stream():
    return FakeStream
