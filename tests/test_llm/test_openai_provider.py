import json

import httpx
import pytest

from gateway_assistant.config import RuntimeConfig
from gateway_assistant.exceptions import ConfigurationError, LLMAPIError, LLMError
from gateway_assistant.llm import (
    OPENAI_BASE_URL,
    Message,
    OpenAICompatibleProvider,
    create_provider,
    get_text_from_content,
)


def _provider(handler) -> OpenAICompatibleProvider:
    provider = OpenAICompatibleProvider(api_key="sk-test", base_url="https://llm.example/v1/")
    provider.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return provider


def test_get_text_from_content():
    assert get_text_from_content("plain") == "plain"
    assert get_text_from_content(["a", {"type": "text", "text": "b"}, {"type": "image"}, 3]) == "a\nb"
    assert get_text_from_content(None) == ""


@pytest.mark.asyncio
async def test_complete_posts_chat_completion():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "gpt-4o-mini",
                "choices": [{"message": {"role": "assistant", "content": "Hello there"}}],
                "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
            },
        )

    provider = _provider(handler)
    response = await provider.complete(
        [Message("system", "be brief"), Message("user", "hi"), Message("tool", "ignored")],
        temperature=0.0,
    )
    await provider.close()

    assert response.content == "Hello there"
    assert response.usage["total_tokens"] == 7
    assert seen["url"] == "https://llm.example/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["temperature"] == 0.0
    assert seen["body"]["stream"] is False
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]
    assert "max_tokens" not in seen["body"]


@pytest.mark.asyncio
async def test_complete_http_error_keeps_status():
    provider = _provider(lambda request: httpx.Response(429, text="rate limited"))

    with pytest.raises(LLMAPIError) as exc:
        await provider.complete([Message("user", "hi")])

    assert exc.value.status_code == 429
    assert "rate limited" in str(exc.value)


@pytest.mark.asyncio
async def test_complete_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(LLMAPIError):
        await _provider(handler).complete([Message("user", "hi")])


@pytest.mark.asyncio
async def test_complete_bad_json_is_llm_error():
    provider = _provider(lambda request: httpx.Response(200, text="not json"))

    with pytest.raises(LLMError):
        await provider.complete([Message("user", "hi")])


@pytest.mark.asyncio
async def test_streaming_yields_deltas_until_done():
    events = [
        {"choices": [{"delta": {"role": "assistant"}}]},
        {"choices": [{"delta": {"content": "Hel"}}]},
        {"choices": []},
        {"choices": [{"delta": {"content": "lo"}}]},
    ]
    body = "".join(f"data: {json.dumps(event)}\n\n" for event in events)
    body += ": keep-alive\n\ndata: not-json\n\ndata: [DONE]\n\n"
    body += 'data: {"choices": [{"delta": {"content": "late"}}]}\n\n'

    provider = _provider(lambda request: httpx.Response(200, text=body))

    chunks = [chunk async for chunk in provider.complete_streaming([Message("user", "hi")])]

    assert chunks == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_streaming_error_status():
    provider = _provider(lambda request: httpx.Response(401, text="bad key"))

    with pytest.raises(LLMAPIError) as exc:
        async for _ in provider.complete_streaming([Message("user", "hi")]):
            pass

    assert exc.value.status_code == 401


def test_create_provider_requires_api_key():
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        create_provider(RuntimeConfig(openai_api_key="  "))


@pytest.mark.asyncio
async def test_create_provider_uses_runtime_settings():
    provider = create_provider(RuntimeConfig(openai_api_key="sk-1", openai_model="gpt-4.1", openai_base_url=""))
    try:
        assert isinstance(provider, OpenAICompatibleProvider)
        assert provider.model == "gpt-4.1"
        assert provider.base_url == OPENAI_BASE_URL
    finally:
        await provider.close()
