import json

import httpx
import pytest
from intake.core.config import settings
from intake.core.errors import LLMError
from intake.llm import openai_client
from intake.llm.openai_client import chat_completion, stream_chat_completion

def _install(monkeypatch, handler):
    real = httpx.AsyncClient
    seen = []
    def wrapped(request):
        seen.append(request)
        return handler(request)
    def factory(**kwargs):
        return real(transport=httpx.MockTransport(wrapped), **kwargs)
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(openai_client.httpx, "AsyncClient", factory)
    return seen

@pytest.mark.asyncio
async def test_chat_completion_payload(monkeypatch):
    seen = _install(monkeypatch, lambda req: httpx.Response(200, json={"choices": [{"message": {"content": "Hi!"}}]}))
    fmt = {"type": "json_schema", "json_schema": {"name": "x", "schema": {}}}
    out = await chat_completion([{"role": "user", "content": "hello"}], temperature=0.1, response_format=fmt, max_tokens=50)
    assert out == "Hi!"
    body = json.loads(seen[0].content)
    assert body["model"] == settings.OPENAI_MODEL
    assert body["response_format"] == fmt
    assert body["max_tokens"] == 50
    assert seen[0].headers["authorization"] == "Bearer sk-test"
    assert str(seen[0].url).endswith("/chat/completions")

@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, json={"error": "boom"}),
    httpx.Response(200, json={"choices": []}),
    httpx.Response(200, json={"choices": [{"message": {"content": "   "}}]}),
    httpx.Response(200, text="not json"),
])
async def test_chat_completion_errors_are_llm_errors(monkeypatch, response):
    _install(monkeypatch, lambda req: response)
    with pytest.raises(LLMError):
        await chat_completion([{"role": "user", "content": "hello"}])

@pytest.mark.asyncio
async def test_not_configured(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
    with pytest.raises(LLMError):
        await chat_completion([])
    with pytest.raises(LLMError):
        async for _ in stream_chat_completion([]):
            pass

@pytest.mark.asyncio
async def test_stream_yields_deltas_in_order(monkeypatch):
    lines = [
        {"choices": [{"delta": {"role": "assistant"}}]},
        {"choices": [{"delta": {"content": "Hel"}}]},
        {"choices": [{"delta": {"content": "lo"}}]},
        {"choices": [{"delta": {"content": "!"}}]},
    ]
    body = "".join(f"data: {json.dumps(chunk)}\n\n" for chunk in lines) + "data: [DONE]\n\n"
    seen = _install(monkeypatch, lambda req: httpx.Response(200, text=body))
    out = [c async for c in stream_chat_completion([{"role": "user", "content": "hi"}])]
    assert out == ["Hel", "lo", "!"]
    assert json.loads(seen[0].content)["stream"] is True

@pytest.mark.asyncio
async def test_stream_http_error(monkeypatch):
    _install(monkeypatch, lambda req: httpx.Response(503, text="unavailable"))
    with pytest.raises(LLMError):
        async for _ in stream_chat_completion([{"role": "user", "content": "hi"}]):
            pass
