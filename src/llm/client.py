"""Completion capability: chat, schema-constrained chat and image generation over OpenRouter."""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Protocol

import httpx
from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field, ValidationError

from src.core.config.models import LLMConfig
from src.core.exceptions import CompletionError

log = logging.getLogger("llm")


class ChatMessage(BaseModel):
    role: str  # "system" | "user" | "assistant"
    content: str


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float | None = None


class ChatChoice(BaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: str | None = None


class ChatCompletion(BaseModel):
    choices: list[ChatChoice] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)

    @property
    def content(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


class StructuredCompletion(BaseModel):
    data: Any
    usage: Usage = Field(default_factory=Usage)


class ImageData(BaseModel):
    url: str | None = None
    b64_json: str | None = None
    revised_prompt: str | None = None


class ImageGeneration(BaseModel):
    created: int | None = None
    data: list[ImageData] = Field(default_factory=list)


class CompletionClient(Protocol):
    async def chat(
        self,
        model: str,
        messages: list[BaseMessage],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> ChatCompletion: ...

    async def chat_with_schema(
        self,
        model: str,
        messages: list[BaseMessage],
        schema: dict[str, Any],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> StructuredCompletion: ...

    async def generate_image(
        self,
        model: str,
        prompt: str,
        size: str = "1024x1024",
        quality: str = "standard",
        style: str = "vivid",
    ) -> ImageGeneration: ...


def _message_text(msg: Any) -> str:
    content = msg.content if hasattr(msg, "content") else msg
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for p in content:
            if isinstance(p, str):
                parts.append(p)
            elif isinstance(p, dict) and p.get("type") == "text":
                parts.append(p.get("text", ""))
        return "".join(parts)
    return str(content)


def _usage_from_message(msg: Any) -> Usage:
    meta = getattr(msg, "usage_metadata", None) or {}
    token_usage = (getattr(msg, "response_metadata", None) or {}).get("token_usage") or {}
    return Usage(
        prompt_tokens=meta.get("input_tokens", token_usage.get("prompt_tokens", 0)) or 0,
        completion_tokens=meta.get("output_tokens", token_usage.get("completion_tokens", 0)) or 0,
        total_tokens=meta.get("total_tokens", token_usage.get("total_tokens", 0)) or 0,
        cost=token_usage.get("cost"),
    )


class OpenRouterClient:
    """OpenAI-compatible client pointed at OpenRouter. Chat goes through LangChain, images through httpx."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        site_url: str | None = None,
        site_name: str | None = "NHP",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._site_url = site_url
        self._site_name = site_name
        self._timeout = timeout
        self._transport = transport

    def _attribution_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._site_url:
            headers["HTTP-Referer"] = self._site_url
        if self._site_name:
            headers["X-Title"] = self._site_name
        return headers

    def _llm(self, model: str, temperature: float, max_tokens: int | None) -> ChatOpenAI:
        # Retries are owned by the step executor
        return ChatOpenAI(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=self._api_key,
            base_url=self._base_url,
            default_headers=self._attribution_headers(),
            timeout=self._timeout,
            max_retries=0,
        )

    async def chat(
        self,
        model: str,
        messages: list[BaseMessage],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> ChatCompletion:
        llm = self._llm(model, temperature, max_tokens)
        runnable = llm.bind(response_format=response_format) if response_format else llm
        try:
            out = await runnable.ainvoke(messages)
        except Exception as e:
            log.warning("chat %s failed: %s", model, e)
            raise CompletionError(str(e) or type(e).__name__) from e
        finish = (getattr(out, "response_metadata", None) or {}).get("finish_reason")
        return ChatCompletion(
            choices=[ChatChoice(message=ChatMessage(role="assistant", content=_message_text(out)), finish_reason=finish)],
            usage=_usage_from_message(out),
        )

    async def chat_with_schema(
        self,
        model: str,
        messages: list[BaseMessage],
        schema: dict[str, Any],
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> StructuredCompletion:
        response = await self.chat(
            model,
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_schema", "json_schema": schema},
        )
        content = response.content
        if not content:
            raise CompletionError("No content in response")
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise CompletionError(f"Structured response is not valid JSON: {e}") from e
        return StructuredCompletion(data=data, usage=response.usage)

    async def generate_image(
        self,
        model: str,
        prompt: str,
        size: str = "1024x1024",
        quality: str = "standard",
        style: str = "vivid",
    ) -> ImageGeneration:
        url = f"{self._base_url}/images/generations"
        headers = {"Authorization": f"Bearer {self._api_key}", **self._attribution_headers()}
        payload = {"model": model, "prompt": prompt, "n": 1, "size": size, "quality": quality, "style": style}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise CompletionError(f"Image generation failed: {e}") from e
        if r.status_code != 200:
            try:
                body = r.json()
            except ValueError:
                body = {}
            err = body.get("error") if isinstance(body, dict) else None
            message = err.get("message") if isinstance(err, dict) else None
            raise CompletionError(message or f"Image generation failed: {r.status_code}")
        try:
            return ImageGeneration.model_validate(r.json())
        except (ValueError, ValidationError) as e:
            raise CompletionError(f"Invalid image generation response: {e}") from e


def create_openrouter_client(config: LLMConfig) -> OpenRouterClient | None:
    """Build a client from config; None when the API key env var is not set."""
    api_key = os.environ.get(config.api_key_env)
    if not api_key:
        return None
    return OpenRouterClient(
        api_key=api_key,
        base_url=config.base_url,
        site_url=config.site_url,
        site_name=config.site_name,
        timeout=config.request_timeout_s,
    )
