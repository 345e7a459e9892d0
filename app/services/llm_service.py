"""生成服务：OpenAI 兼容客户端 + 可取消的流式生成。"""
import inspect
import logging
from typing import Any, AsyncIterator

import httpx
import openai
from openai import AsyncOpenAI

from app.core.cancellation import CancellationToken
from app.core.config import Settings, settings as default_settings
from app.core.errors import ConfigurationError, GenerationError
from app.schemas.study import ResultMode, UploadedFile
from app.services.prompt_service import build_generation_request

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None
_client_key: tuple[str, str] | None = None


def _require_api_key(cfg: Settings) -> str:
    if not cfg.api_key:
        raise ConfigurationError(
            "API Key not detected. Ensure 'GEMINI_API_KEY' is configured in your environment."
        )
    return cfg.api_key


def get_openai_client(settings: Settings | None = None) -> AsyncOpenAI:
    """OpenAI 兼容客户端，按 (api_key, base_url) 复用；缺少凭证时抛出 ConfigurationError。"""
    global _client, _client_key
    cfg = settings or default_settings
    api_key = _require_api_key(cfg)
    key = (api_key, cfg.llm_base_url)
    if _client is None or _client_key != key:
        _client = AsyncOpenAI(api_key=api_key, base_url=cfg.llm_base_url)
        _client_key = key
    return _client


async def _close_quietly(response: Any) -> None:
    close = getattr(response, "close", None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.debug("[stream] 关闭上游响应失败: %s", e)


def _error_message(e: Exception) -> str:
    return getattr(e, "message", None) or str(e) or "Failed to generate content."


async def stream_generation(
    primary: list[UploadedFile],
    secondary: list[UploadedFile],
    mode: ResultMode,
    token: CancellationToken | None = None,
    *,
    settings: Settings | None = None,
    client: Any = None,
) -> AsyncIterator[str]:
    """
    发起一次流式生成，按到达顺序 yield 文本片段（不重排、不去重）。

    - 缺少凭证：在产生任何片段前抛出 ConfigurationError。
    - 每个片段边界检查 token；已取消则关闭上游响应并正常结束，不抛异常。
    - 传输/服务错误转为 GenerationError（保留服务端报错信息）；若由取消引起则静默结束。
    序列不可重启，只允许单一消费者。
    """
    cfg = settings or default_settings
    _require_api_key(cfg)
    request = build_generation_request(mode, primary, secondary, cfg)
    if client is None:
        client = get_openai_client(cfg)

    logger.info(
        "[stream] 开始流式生成 mode=%s model=%s primary=%d secondary=%d",
        mode.value, request.model, len(primary), len(secondary),
    )
    if cfg.log_prompts:
        logger.info("[stream] 系统提示词\n%s", request.system_instruction)

    response = None
    count = 0
    try:
        response = await client.chat.completions.create(
            model=request.model,
            messages=request.messages(),
            temperature=request.temperature,
            stream=True,
        )
        async for chunk in response:
            if token is not None and token.cancelled:
                logger.info("[stream] 已取消，停止消费 mode=%s fragments=%d", mode.value, count)
                break
            if not getattr(chunk, "choices", None):
                continue
            delta = chunk.choices[0].delta
            text = getattr(delta, "content", None)
            if text:
                count += 1
                yield text
    except (openai.OpenAIError, httpx.HTTPError, OSError) as e:
        if token is not None and token.cancelled:
            logger.info("[stream] 取消引起的中断，忽略: %s", e)
            return
        logger.warning("[stream] 生成失败 mode=%s: %s", mode.value, e)
        raise GenerationError(_error_message(e)) from e
    finally:
        if response is not None:
            await _close_quietly(response)
    logger.info("[stream] 流式结束 mode=%s fragments=%d", mode.value, count)
