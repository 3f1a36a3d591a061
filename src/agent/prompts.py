from __future__ import annotations

import json
import re
from typing import Any

from src.core.contracts.agent import Agent, SchemaField
from src.knowledge.base import KnowledgeEntry

JSON_TYPES = {
    "string": "string",
    "number": "number",
    "boolean": "boolean",
    "json": "object",
    "array": "array",
    "image": "string",
    "file": "string",
}

RAG_HEADER = """## AVAILABLE KNOWLEDGE (RAG)
Use the information below as reference for your answer:"""


def build_system_prompt(
    role: str,
    description: str,
    custom_prompt: str,
    output_schema: list[SchemaField] | None = None,
) -> str:
    sections = []
    if role:
        sections.append(f"# Role\n{role}")
    if description:
        sections.append(f"# Description\n{description}")
    if custom_prompt:
        sections.append(custom_prompt)
    prompt = "\n\n".join(sections)
    if output_schema:
        fields = ",\n".join(
            f'  "{f.name}": <{f.type}>{" (required)" if f.required else ""} // {f.description}'
            for f in output_schema
        )
        prompt += (
            "\n\nYou must respond with a JSON object containing exactly these fields and no others:\n"
            f"```json\n{{\n{fields}\n}}\n```"
        )
    return prompt


def format_knowledge(entries: list[KnowledgeEntry]) -> str:
    if not entries:
        return ""
    blocks = []
    for e in entries:
        header = f"### {e.title}" + (f" [{', '.join(e.tags)}]" if e.tags else "")
        blocks.append(f"{header}\n{e.content}")
    body = "\n\n---\n\n".join(blocks)
    return f"{RAG_HEADER}\n\n{body}\n\n---"


def output_json_schema(agent: Agent) -> dict[str, Any]:
    """Strict json_schema response format built from the agent's declared output fields."""
    properties: dict[str, Any] = {}
    for f in agent.output_schema:
        prop: dict[str, Any] = {"type": JSON_TYPES.get(f.type, "string")}
        if f.description:
            prop["description"] = f.description
        properties[f.name] = prop
    return {
        "name": re.sub(r"[^A-Za-z0-9_-]", "_", f"{agent.id}_output"),
        "strict": True,
        "schema": {
            "type": "object",
            "properties": properties,
            "required": [f.name for f in agent.output_schema if f.required],
            "additionalProperties": False,
        },
    }


def format_user_message(payload: dict[str, Any]) -> str:
    lines = []
    for key, value in payload.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False)
        lines.append(f"{key}: {value}")
    return "\n".join(lines)
