import json
import logging
from collections.abc import AsyncIterator

import httpx

from ..core.config import settings
from ..core.errors import LLMError

logger = logging.getLogger(__name__)


def is_configured() -> bool:
    return bool(settings.OPENAI_API_KEY)


def _request(messages, temperature, response_format, model, max_tokens, stream=False):
    url = f"{settings.OPENAI_BASE_URL.rstrip('/')}/chat/completions"
    headers = {"Authorization": f"Bearer {settings.OPENAI_API_KEY}"}
    payload = {
        "model": model or settings.OPENAI_MODEL,
        "messages": messages,
        "temperature": temperature,
    }
    if max_tokens:
        payload["max_tokens"] = max_tokens
    if response_format:
        payload["response_format"] = response_format
    if stream:
        payload["stream"] = True
    return url, headers, payload


async def chat_completion(
    messages,
    temperature: float = 0.2,
    response_format: dict | None = None,
    model: str | None = None,
    max_tokens: int | None = None,
) -> str:
    if not is_configured():
        raise LLMError("language model is not configured")
    url, headers, payload = _request(messages, temperature, response_format, model, max_tokens)
    try:
        async with httpx.AsyncClient(timeout=settings.OPENAI_TIMEOUT_SECONDS) as client:
            r = await client.post(url, headers=headers, json=payload)
            r.raise_for_status()
            data = r.json()
        content = data["choices"][0]["message"]["content"]
    except httpx.HTTPError as e:
        logger.warning("LLM_REQUEST_FAILED", extra={"error_type": type(e).__name__})
        raise LLMError(str(e)) from e
    except (KeyError, IndexError, TypeError, ValueError) as e:
        logger.warning("LLM_RESPONSE_MALFORMED", extra={"error_type": type(e).__name__})
        raise LLMError("unexpected completion payload") from e
    if not isinstance(content, str) or not content.strip():
        raise LLMError("empty completion")
    return content


async def stream_chat_completion(
    messages,
    temperature: float = 0.2,
    model: str | None = None,
    max_tokens: int | None = None,
) -> AsyncIterator[str]:
    """Yield content deltas in generation order until the server sends [DONE]."""
    if not is_configured():
        raise LLMError("language model is not configured")
    url, headers, payload = _request(messages, temperature, None, model, max_tokens, stream=True)
    try:
        async with httpx.AsyncClient(timeout=settings.OPENAI_TIMEOUT_SECONDS) as client:
            async with client.stream("POST", url, headers=headers, json=payload) as r:
                r.raise_for_status()
                async for line in r.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        return
                    delta = json.loads(data)["choices"][0].get("delta", {}).get("content")
                    if delta:
                        yield delta
    except httpx.HTTPError as e:
        logger.warning("LLM_REQUEST_FAILED", extra={"error_type": type(e).__name__, "stream": True})
        raise LLMError(str(e)) from e
    except (KeyError, IndexError, TypeError, ValueError) as e:
        logger.warning("LLM_RESPONSE_MALFORMED", extra={"error_type": type(e).__name__, "stream": True})
        raise LLMError("unexpected stream payload") from e
