import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest

from app.core.cancellation import CancellationToken
from app.core.config import Settings
from app.core.errors import ConfigurationError, GenerationError
from app.schemas.study import ResultMode
from app.services.llm_service import stream_generation
from conftest import make_file


def _chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


class FakeResponse:
    def __init__(self, chunks, error=None):
        self.chunks = list(chunks)
        self.error = error
        self.closed = False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for c in self.chunks:
            yield c
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


class FakeClient:
    def __init__(self, response):
        self.response = response
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        return self.response


def _collect(gen):
    async def run():
        return [t async for t in gen]

    return asyncio.run(run())


def _solve_inputs():
    return [make_file("notes.pdf")], [make_file("exam2023.pdf")]


def test_yields_fragments_in_order_and_skips_empty():
    response = FakeResponse(
        [_chunk("TOPIC: A\n"), _chunk(""), _chunk(None), SimpleNamespace(choices=[]), _chunk("1.1 **x**")]
    )
    client = FakeClient(response)
    primary, secondary = _solve_inputs()
    out = _collect(
        stream_generation(primary, secondary, ResultMode.SOLVE, settings=Settings(api_key="k"), client=client)
    )
    assert out == ["TOPIC: A\n", "1.1 **x**"]
    assert response.closed


def test_request_arguments():
    client = FakeClient(FakeResponse([_chunk("ok")]))
    primary, secondary = _solve_inputs()
    cfg = Settings(api_key="k", llm_model="gemini-test")
    _collect(stream_generation(primary, secondary, ResultMode.SOLVE, settings=cfg, client=client))
    (call,) = client.calls
    assert call["model"] == "gemini-test"
    assert call["stream"] is True
    assert call["temperature"] == pytest.approx(0.1)
    assert call["messages"][0]["role"] == "system"
    assert call["messages"][1]["content"][0]["text"] == "--- COURSE MATERIAL ---"


def test_cancel_stops_at_next_fragment():
    response = FakeResponse([_chunk("a"), _chunk("b"), _chunk("c")])
    client = FakeClient(response)
    token = CancellationToken()
    primary, secondary = _solve_inputs()

    async def run():
        out = []
        async for text in stream_generation(
            primary, secondary, ResultMode.SOLVE, token, settings=Settings(api_key="k"), client=client
        ):
            out.append(text)
            token.cancel()
        return out

    assert asyncio.run(run()) == ["a"]
    assert response.closed


def test_transport_error_becomes_generation_error():
    request = httpx.Request("POST", "https://example.invalid/chat/completions")
    response = FakeResponse([_chunk("partial")], error=openai.APIConnectionError(request=request))
    client = FakeClient(response)
    primary, secondary = _solve_inputs()

    async def run():
        out = []
        with pytest.raises(GenerationError) as exc:
            async for text in stream_generation(
                primary, secondary, ResultMode.SOLVE, settings=Settings(api_key="k"), client=client
            ):
                out.append(text)
        return out, exc.value

    out, err = asyncio.run(run())
    assert out == ["partial"]
    assert str(err) == "Connection error."
    assert response.closed


def test_error_after_cancel_ends_quietly():
    request = httpx.Request("POST", "https://example.invalid/chat/completions")
    response = FakeResponse([], error=openai.APIConnectionError(request=request))
    token = CancellationToken()
    token.cancel()
    primary, secondary = _solve_inputs()
    out = _collect(
        stream_generation(
            primary, secondary, ResultMode.SOLVE, token, settings=Settings(api_key="k"), client=FakeClient(response)
        )
    )
    assert out == []


def test_missing_credential_fails_before_request():
    client = FakeClient(FakeResponse([_chunk("never")]))
    primary, secondary = _solve_inputs()
    with pytest.raises(ConfigurationError):
        _collect(stream_generation(primary, secondary, ResultMode.SOLVE, settings=Settings(api_key=""), client=client))
    assert client.calls == []
