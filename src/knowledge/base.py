from __future__ import annotations

import re
from typing import Protocol

from pydantic import BaseModel, Field, field_validator

_WORD = re.compile(r"\w+", re.UNICODE)


class KnowledgeEntry(BaseModel):
    id: str
    title: str
    content: str
    tags: list[str] = Field(default_factory=list)
    agent_id: str | None = None  # None = shared by every agent

    @field_validator("id", "agent_id", mode="before")
    @classmethod
    def _as_str(cls, v):
        return str(v) if isinstance(v, int) else v

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, v):
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        return v or []


class KnowledgeSource(Protocol):
    async def get_for_agent(self, agent_id: str) -> list[KnowledgeEntry]: ...

    async def search(self, query: str, agent_id: str | None = None) -> list[KnowledgeEntry]: ...


def _tokens(text: str) -> set[str]:
    return {w.lower() for w in _WORD.findall(text) if len(w) > 2}


class InMemoryKnowledgeSource:
    """Keyword-overlap retrieval over a list of entries. Used in tests and local runs without Chroma."""

    def __init__(self, entries: list[KnowledgeEntry] | None = None, limit: int = 5) -> None:
        self._entries: list[KnowledgeEntry] = list(entries or [])
        self._limit = limit

    def add_entries(self, entries: list[KnowledgeEntry]) -> int:
        self._entries.extend(entries)
        return len(entries)

    async def get_for_agent(self, agent_id: str) -> list[KnowledgeEntry]:
        return [e for e in self._entries if e.agent_id == agent_id]

    async def search(self, query: str, agent_id: str | None = None) -> list[KnowledgeEntry]:
        terms = _tokens(query)
        if not terms:
            return []
        scored = []
        for e in self._entries:
            if agent_id is not None and e.agent_id not in (None, agent_id):
                continue
            haystack = _tokens(f"{e.title} {e.content} {' '.join(e.tags)}")
            score = len(terms & haystack)
            if score:
                scored.append((score, e))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [e for _, e in scored[: self._limit]]
