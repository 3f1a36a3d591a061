from __future__ import annotations

import json

import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from src.core.config.models import LLMConfig
from src.core.exceptions import CompletionError
from src.llm import client as client_module
from src.llm.client import OpenRouterClient, create_openrouter_client

MESSAGES = [SystemMessage(content="be nice"), HumanMessage(content="hi")]


class _FakeChatOpenAI:
    """Stands in for langchain's ChatOpenAI so no network call is made."""

    reply: object = "hello"
    error: Exception | None = None
    instances: list["_FakeChatOpenAI"] = []

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.bound: dict | None = None
        self.messages = None
        _FakeChatOpenAI.instances.append(self)

    def bind(self, **kwargs):
        self.bound = kwargs
        return self

    async def ainvoke(self, messages):
        self.messages = messages
        if self.error is not None:
            raise self.error
        return AIMessage(
            content=self.reply,
            usage_metadata={"input_tokens": 5, "output_tokens": 7, "total_tokens": 12},
            response_metadata={"finish_reason": "stop", "token_usage": {"cost": 0.002}},
        )


@pytest.fixture
def fake_chat(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(_FakeChatOpenAI, "reply", "hello")
    monkeypatch.setattr(_FakeChatOpenAI, "error", None)
    monkeypatch.setattr(_FakeChatOpenAI, "instances", [])
    monkeypatch.setattr(client_module, "ChatOpenAI", _FakeChatOpenAI)
    return _FakeChatOpenAI


@pytest.mark.asyncio
async def test_chat_returns_content_and_usage(fake_chat) -> None:
    client = OpenRouterClient(api_key="k", site_url="https://app.test", site_name="NHP")
    completion = await client.chat("openai/gpt-4o", MESSAGES, temperature=0.2, max_tokens=100)
    assert completion.content == "hello"
    assert completion.usage.total_tokens == 12
    assert completion.usage.prompt_tokens == 5
    assert completion.usage.cost == 0.002
    assert completion.choices[0].finish_reason == "stop"

    llm = fake_chat.instances[0]
    assert llm.kwargs["model"] == "openai/gpt-4o"
    assert llm.kwargs["temperature"] == 0.2
    assert llm.kwargs["max_tokens"] == 100
    assert llm.kwargs["max_retries"] == 0
    assert llm.kwargs["base_url"] == "https://openrouter.ai/api/v1"
    assert llm.kwargs["default_headers"] == {"HTTP-Referer": "https://app.test", "X-Title": "NHP"}
    assert llm.messages == MESSAGES
    assert llm.bound is None


@pytest.mark.asyncio
async def test_chat_joins_text_content_parts(fake_chat) -> None:
    fake_chat.reply = [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]
    completion = await OpenRouterClient(api_key="k").chat("m", MESSAGES)
    assert completion.content == "ab"


@pytest.mark.asyncio
async def test_chat_wraps_provider_errors(fake_chat) -> None:
    fake_chat.error = RuntimeError("429 rate limited")
    with pytest.raises(CompletionError, match="429 rate limited"):
        await OpenRouterClient(api_key="k").chat("m", MESSAGES)


@pytest.mark.asyncio
async def test_chat_with_schema_binds_response_format_and_parses(fake_chat) -> None:
    fake_chat.reply = json.dumps({"title": "T"})
    schema = {"name": "out", "strict": True, "schema": {"type": "object"}}
    result = await OpenRouterClient(api_key="k").chat_with_schema("m", MESSAGES, schema)
    assert result.data == {"title": "T"}
    assert result.usage.total_tokens == 12
    assert fake_chat.instances[0].bound == {"response_format": {"type": "json_schema", "json_schema": schema}}


@pytest.mark.asyncio
async def test_chat_with_schema_rejects_empty_and_invalid_content(fake_chat) -> None:
    client = OpenRouterClient(api_key="k")
    fake_chat.reply = ""
    with pytest.raises(CompletionError, match="No content"):
        await client.chat_with_schema("m", MESSAGES, {})
    fake_chat.reply = "not json"
    with pytest.raises(CompletionError, match="not valid JSON"):
        await client.chat_with_schema("m", MESSAGES, {})


@pytest.mark.asyncio
async def test_generate_image_posts_to_images_endpoint() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"created": 1, "data": [{"url": "https://img/1.png", "revised_prompt": "a cat!"}]})

    client = OpenRouterClient(api_key="secret", transport=httpx.MockTransport(handler))
    result = await client.generate_image("openai/dall-e-3", "a cat", size="512x512")
    assert result.data[0].url == "https://img/1.png"
    request = seen[0]
    assert str(request.url) == "https://openrouter.ai/api/v1/images/generations"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body == {
        "model": "openai/dall-e-3",
        "prompt": "a cat",
        "n": 1,
        "size": "512x512",
        "quality": "standard",
        "style": "vivid",
    }


@pytest.mark.asyncio
async def test_generate_image_surfaces_provider_error_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "model does not support images"}})

    client = OpenRouterClient(api_key="k", transport=httpx.MockTransport(handler))
    with pytest.raises(CompletionError, match="model does not support images"):
        await client.generate_image("m", "x")


@pytest.mark.asyncio
async def test_generate_image_status_without_body() -> None:
    client = OpenRouterClient(api_key="k", transport=httpx.MockTransport(lambda r: httpx.Response(502, text="bad gateway")))
    with pytest.raises(CompletionError, match="Image generation failed: 502"):
        await client.generate_image("m", "x")


def test_client_factory_needs_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    config = LLMConfig(api_key_env="WS_TEST_OPENROUTER_KEY")
    monkeypatch.delenv("WS_TEST_OPENROUTER_KEY", raising=False)
    assert create_openrouter_client(config) is None
    monkeypatch.setenv("WS_TEST_OPENROUTER_KEY", "k")
    assert isinstance(create_openrouter_client(config), OpenRouterClient)
