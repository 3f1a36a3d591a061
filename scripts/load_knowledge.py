#!/usr/bin/env python3
"""Load knowledge entries from a JSON file into the Chroma collection used by RAG-enabled agents.

File format: a list of entries, or {"entries": [...]}. Each entry has id, title, content,
optional tags (list or comma-separated string) and optional agent_id (omit for shared entries).
"""
import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from pydantic import ValidationError

from src.core.config.env import load_default_env, require_env
from src.core.config.loader import load_workspace_config
from src.core.config.models import KnowledgeConfig
from src.core.exceptions import ConfigError
from src.knowledge.base import KnowledgeEntry
from src.knowledge.chroma import create_chroma_knowledge


def read_entries(path: Path) -> list[KnowledgeEntry]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("entries", [])
    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a list of entries")
    return [KnowledgeEntry.model_validate(e) for e in raw]


def main():
    parser = argparse.ArgumentParser(description="Load knowledge entries into Chroma.")
    parser.add_argument("file", help="JSON file with knowledge entries")
    parser.add_argument("--config", default=os.environ.get("CONFIG_PATH", "config/workspace.json"), help="Workspace config path")
    args = parser.parse_args()

    load_default_env(ROOT)
    try:
        config = load_workspace_config(args.config, project_root=ROOT)
        entries = read_entries(Path(args.file))
        knowledge_config = config.knowledge or KnowledgeConfig()
        require_env(knowledge_config.persist_directory_env)
    except (ConfigError, ValidationError, ValueError, OSError) as e:
        print(e, file=sys.stderr)
        sys.exit(1)

    store = create_chroma_knowledge(knowledge_config, project_root=ROOT)
    count = store.add_entries(entries)
    print(f"Loaded {count} entries into collection '{knowledge_config.collection_name}'", flush=True)


if __name__ == "__main__":
    main()
