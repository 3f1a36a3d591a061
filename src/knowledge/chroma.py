from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any

import chromadb
from langchain_chroma import Chroma
from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings

from src.core.config.models import KnowledgeConfig
from src.knowledge.base import KnowledgeEntry

SHARED = ""  # agent_id metadata value for entries visible to every agent


def _entry_from(entry_id: str, content: str, metadata: dict[str, Any] | None) -> KnowledgeEntry:
    meta = metadata or {}
    return KnowledgeEntry(
        id=meta.get("entry_id") or entry_id,
        title=meta.get("title", ""),
        content=content,
        tags=meta.get("tags", ""),
        agent_id=meta.get("agent_id") or None,
    )


class ChromaKnowledgeSource:
    """Knowledge entries stored in a persistent Chroma collection, one document per entry."""

    def __init__(
        self,
        persist_directory: str | Path,
        collection_name: str = "knowledge",
        embedding_function: Embeddings | None = None,
        k: int = 5,
    ) -> None:
        path = Path(persist_directory)
        path.mkdir(parents=True, exist_ok=True)
        client = chromadb.PersistentClient(path=str(path))
        if embedding_function is None:
            embedding_function = OpenAIEmbeddings()
        self._k = k
        self._store = Chroma(
            client=client,
            collection_name=collection_name,
            embedding_function=embedding_function,
        )

    def add_entries(self, entries: list[KnowledgeEntry]) -> int:
        if not entries:
            return 0
        docs = [
            Document(
                page_content=e.content,
                metadata={
                    "entry_id": e.id,
                    "title": e.title,
                    "tags": ", ".join(e.tags),
                    "agent_id": e.agent_id or SHARED,
                },
            )
            for e in entries
        ]
        self._store.add_documents(docs, ids=[e.id for e in entries])
        return len(docs)

    def _get_for_agent(self, agent_id: str) -> list[KnowledgeEntry]:
        got = self._store.get(where={"agent_id": agent_id}, include=["documents", "metadatas"])
        return [
            _entry_from(i, doc, meta)
            for i, doc, meta in zip(got.get("ids", []), got.get("documents", []), got.get("metadatas", []))
        ]

    def _search(self, query: str, agent_id: str | None) -> list[KnowledgeEntry]:
        where = None
        if agent_id is not None:
            where = {"$or": [{"agent_id": agent_id}, {"agent_id": SHARED}]}
        docs = self._store.similarity_search(query, k=self._k, filter=where)
        return [_entry_from(d.id or "", d.page_content, d.metadata) for d in docs]

    async def get_for_agent(self, agent_id: str) -> list[KnowledgeEntry]:
        return await asyncio.to_thread(self._get_for_agent, agent_id)

    async def search(self, query: str, agent_id: str | None = None) -> list[KnowledgeEntry]:
        return await asyncio.to_thread(self._search, query, agent_id)


def create_chroma_knowledge(config: KnowledgeConfig, project_root: Path | None = None) -> ChromaKnowledgeSource | None:
    """Open the configured collection; None when the persist directory env var is unset."""
    path = os.environ.get(config.persist_directory_env, "")
    if not path:
        return None
    root = project_root or Path.cwd()
    abs_path = (root / path).resolve() if not Path(path).is_absolute() else Path(path)
    return ChromaKnowledgeSource(
        persist_directory=abs_path,
        collection_name=config.collection_name,
        k=config.k,
    )
