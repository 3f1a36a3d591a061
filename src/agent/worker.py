"""Run one specialist agent against a resolved input: image models, RAG, structured or free-form chat."""
from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.prompts import ChatPromptTemplate

from src.agent.prompts import build_system_prompt, format_knowledge, format_user_message, output_json_schema
from src.agent.validation import check_input, coerce_number
from src.core.contracts.agent import Agent, AgentResponse
from src.knowledge.base import KnowledgeEntry, KnowledgeSource
from src.llm.client import CompletionClient
from src.llm.parsing import parse_json_reply

log = logging.getLogger("worker")

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048
MAX_KNOWLEDGE_ENTRIES = 5

IMAGE_MODEL_MARKERS = (
    "dall-e",
    "stable-diffusion",
    "sdxl",
    "midjourney",
    "imagen",
    "ideogram",
    "flux",
    "playground",
    "leonardo",
    "black-forest-labs",
    "stability",
)

SPECIALIST_PROMPT = ChatPromptTemplate.from_messages([
    ("system", "{system_prompt}"),
    ("human", "{input}"),
])


def is_image_model(model_id: str) -> bool:
    model = model_id.lower()
    return any(marker in model for marker in IMAGE_MODEL_MARKERS)


def _image_prompt(payload: dict[str, Any]) -> str:
    for key in ("prompt", "text", "description"):
        if payload.get(key):
            return str(payload[key])
    for value in payload.values():
        if isinstance(value, str) and value:
            return value
    return json.dumps(payload, ensure_ascii=False, default=str)


def _knowledge_query(payload: dict[str, Any]) -> str:
    for key in ("goal", "task"):
        if isinstance(payload.get(key), str) and payload[key]:
            return payload[key]
    return " ".join(v for v in payload.values() if isinstance(v, str))


async def retrieve_knowledge(knowledge: KnowledgeSource, agent_id: str, query: str) -> list[KnowledgeEntry]:
    """Agent-scoped entries first, then search hits; deduped by id, capped. Failures yield []."""
    try:
        own = await knowledge.get_for_agent(agent_id)
        found = await knowledge.search(query, agent_id)
    except Exception as e:
        log.warning("[RAG] retrieval for agent %s failed: %s", agent_id, e)
        return []
    merged: dict[str, KnowledgeEntry] = {}
    for entry in [*own, *found]:
        if entry.id and entry.id not in merged:
            merged[entry.id] = entry
    return list(merged.values())[:MAX_KNOWLEDGE_ENTRIES]


async def _generate_image(agent: Agent, payload: dict[str, Any], client: CompletionClient) -> AgentResponse:
    prompt = _image_prompt(payload)
    result = await client.generate_image(
        agent.model,
        prompt,
        size=str(payload.get("size") or "1024x1024"),
        quality=str(payload.get("quality") or "standard"),
        style=str(payload.get("style") or "vivid"),
    )
    images = [d.url or d.b64_json for d in result.data if d.url or d.b64_json]
    return AgentResponse(
        success=True,
        output={
            "images": images,
            "image_url": images[0] if images else None,
            "prompt": prompt,
            "revised_prompt": result.data[0].revised_prompt if result.data else None,
        },
    )


async def invoke_specialist(
    agent: Agent,
    payload: dict[str, Any],
    client: CompletionClient,
    knowledge: KnowledgeSource | None = None,
    enable_rag: bool = True,
) -> AgentResponse:
    """Invoke agent once. Errors come back as success=False, never raised."""
    warnings = check_input(agent.input_schema, payload)
    try:
        if is_image_model(agent.model):
            response = await _generate_image(agent, payload, client)
            response.warnings = warnings
            return response

        system_prompt = build_system_prompt(agent.role, agent.description, agent.system_prompt, agent.output_schema)
        if enable_rag and agent.rag_enabled and knowledge is not None:
            entries = await retrieve_knowledge(knowledge, agent.id, _knowledge_query(payload))
            if entries:
                log.info("[RAG] %s knowledge entries for %s", len(entries), agent.name)
                system_prompt = f"{system_prompt}\n\n{format_knowledge(entries)}"

        messages = SPECIALIST_PROMPT.format_messages(system_prompt=system_prompt, input=format_user_message(payload))
        temperature = coerce_number(agent.temperature, DEFAULT_TEMPERATURE)
        max_tokens = int(coerce_number(agent.max_tokens, DEFAULT_MAX_TOKENS))

        if agent.output_schema:
            structured = await client.chat_with_schema(
                agent.model,
                messages,
                output_json_schema(agent),
                temperature=temperature,
                max_tokens=max_tokens,
            )
            data = structured.data
            return AgentResponse(
                success=True,
                output=data if isinstance(data, dict) else {"result": data},
                tokens_used=structured.usage.total_tokens,
                cost=structured.usage.cost,
                warnings=warnings,
            )

        completion = await client.chat(agent.model, messages, temperature=temperature, max_tokens=max_tokens)
        content = completion.content
        try:
            parsed = parse_json_reply(content)
            output = parsed if isinstance(parsed, dict) else {"result": parsed}
        except ValueError:
            output = {"result": content}
        return AgentResponse(
            success=True,
            output=output,
            tokens_used=completion.usage.total_tokens,
            cost=completion.usage.cost,
            warnings=warnings,
        )
    except Exception as e:
        log.warning("%s failed: %s", agent.name, e)
        return AgentResponse(success=False, error=str(e) or type(e).__name__, warnings=warnings)
