from __future__ import annotations

import hashlib
from pathlib import Path

import pytest
from langchain_core.embeddings import Embeddings

from src.knowledge.base import InMemoryKnowledgeSource, KnowledgeEntry
from src.knowledge.chroma import ChromaKnowledgeSource

ENTRIES = [
    KnowledgeEntry(id="k1", title="Rocket basics", content="Rockets burn propellant.", tags="space, physics", agent_id="a"),
    KnowledgeEntry(id="k2", title="Shared glossary", content="A rocket stage is a separable section."),
    KnowledgeEntry(id="k3", title="Other agent notes", content="Rocket launch windows.", agent_id="b"),
    KnowledgeEntry(id="k4", title="Cooking", content="Bread needs yeast."),
]


class _HashEmbeddings(Embeddings):
    """Deterministic bag-of-words vectors so similarity follows shared words."""

    dims = 64

    def _embed(self, text: str) -> list[float]:
        vec = [0.0] * self.dims
        for word in text.lower().split():
            word = word.strip(".,")
            vec[int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dims] += 1.0
        vec[0] += 0.01
        return vec

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)


def test_tags_accept_comma_separated_strings() -> None:
    assert ENTRIES[0].tags == ["space", "physics"]
    assert KnowledgeEntry(id=5, title="t", content="c").id == "5"


@pytest.mark.asyncio
async def test_in_memory_get_for_agent_returns_only_own_entries() -> None:
    source = InMemoryKnowledgeSource(ENTRIES)
    assert [e.id for e in await source.get_for_agent("a")] == ["k1"]


@pytest.mark.asyncio
async def test_in_memory_search_scopes_to_agent_and_shared() -> None:
    source = InMemoryKnowledgeSource(ENTRIES)
    found = await source.search("rocket stage", "a")
    assert [e.id for e in found] == ["k2", "k1"]
    found = await source.search("rockets propellant", "a")
    assert [e.id for e in found] == ["k1"]
    anywhere = await source.search("launch windows")
    assert [e.id for e in anywhere] == ["k3"]


@pytest.mark.asyncio
async def test_in_memory_search_ignores_short_queries_and_respects_limit() -> None:
    source = InMemoryKnowledgeSource(ENTRIES, limit=1)
    assert await source.search("a of") == []
    assert len(await source.search("rocket rockets stage launch")) == 1
    assert source.add_entries([KnowledgeEntry(id="k9", title="x", content="y")]) == 1


@pytest.mark.asyncio
async def test_chroma_source_filters_by_agent(tmp_path: Path) -> None:
    source = ChromaKnowledgeSource(tmp_path / "chroma", collection_name="t", embedding_function=_HashEmbeddings(), k=5)
    assert source.add_entries(ENTRIES) == 4

    own = await source.get_for_agent("a")
    assert [e.id for e in own] == ["k1"]
    assert own[0].tags == ["space", "physics"]

    found = await source.search("rocket stage", "a")
    ids = {e.id for e in found}
    assert "k3" not in ids
    assert {"k1", "k2"} <= ids
    shared = next(e for e in found if e.id == "k2")
    assert shared.agent_id is None
