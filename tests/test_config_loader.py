from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from src.core.config import load_workspace_config
from src.core.config.env import load_default_env, require_env
from src.core.exceptions import ConfigError

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _write(tmp_path: Path, data: object, name: str = "workspace.json") -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
    return path


def test_sample_workspace_config_loads() -> None:
    config = load_workspace_config("config/workspace.json", project_root=PROJECT_ROOT)
    assert config.workspace_id == "demo"
    assert [a.id for a in config.orchestrators()] == ["editor-in-chief", "pipeline"]
    chief = config.get_agent("editor-in-chief")
    assert chief.orchestration_config.execution_mode == "llm-planned"
    assert config.get_agent("researcher").rag_enabled
    assert config.get_agent("nope") is None


def test_defaults_apply_when_sections_are_missing(tmp_path: Path) -> None:
    config = load_workspace_config(_write(tmp_path, {"agents": []}))
    assert config.execution.max_retries == 3
    assert config.execution.retry_delay_ms == 1000
    assert config.execution.step_timeout_ms == 60000
    assert config.llm.api_key_env == "OPENROUTER_API_KEY"
    assert config.knowledge is None


def test_agent_ids_and_legacy_modes_are_normalized(tmp_path: Path) -> None:
    data = {
        "agents": [
            {"id": 7, "name": "Seven", "model": "m"},
            {
                "id": "boss",
                "type": "orchestrator",
                "name": "Boss",
                "model": "m",
                "allowed_agents": [7],
                "orchestration_config": {"execution_mode": "Sequencial"},
            },
        ]
    }
    config = load_workspace_config(_write(tmp_path, data))
    boss = config.get_agent("boss")
    assert config.agents[0].id == "7"
    assert boss.allowed_agents == ["7"]
    assert boss.orchestration_config.execution_mode == "sequential"
    assert boss.orchestration_config.consolidation_strategy == "summarize"


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_workspace_config(tmp_path / "nope.json")


def test_invalid_json(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Invalid JSON"):
        load_workspace_config(_write(tmp_path, "{not json"))


def test_schema_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Invalid config schema"):
        load_workspace_config(_write(tmp_path, {"agents": [{"id": "a", "name": "A"}]}))
    with pytest.raises(ConfigError, match="Invalid config schema"):
        load_workspace_config(_write(tmp_path, {"execution": {"max_retries": 0}}))


def test_duplicate_agent_ids(tmp_path: Path) -> None:
    agents = [{"id": "a", "name": "A", "model": "m"}, {"id": "a", "name": "B", "model": "m"}]
    with pytest.raises(ConfigError, match="Duplicate agent ids"):
        load_workspace_config(_write(tmp_path, {"agents": agents}))


def test_env_file_is_loaded_without_overriding(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("WS_TEST_KEY", raising=False)
    monkeypatch.setenv("WS_TEST_KEEP", "from-shell")
    (tmp_path / "ws.env").write_text("WS_TEST_KEY=from-file\nWS_TEST_KEEP=from-file\n", encoding="utf-8")
    _write(tmp_path, {"env_file_path": "ws.env"})
    try:
        load_workspace_config("workspace.json", project_root=tmp_path)
        assert os.environ["WS_TEST_KEY"] == "from-file"
        assert os.environ["WS_TEST_KEEP"] == "from-shell"
    finally:
        os.environ.pop("WS_TEST_KEY", None)


def test_default_env_prefers_config_env_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("WS_TEST_DEFAULT", raising=False)
    (tmp_path / "config" / "env").mkdir(parents=True)
    (tmp_path / "config" / "env" / ".env").write_text("WS_TEST_DEFAULT=nested\n", encoding="utf-8")
    (tmp_path / ".env").write_text("WS_TEST_DEFAULT=root\n", encoding="utf-8")
    try:
        assert load_default_env(tmp_path) == tmp_path / "config" / "env" / ".env"
        assert os.environ["WS_TEST_DEFAULT"] == "nested"
    finally:
        os.environ.pop("WS_TEST_DEFAULT", None)


def test_require_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WS_TEST_REQUIRED", "x")
    assert require_env("WS_TEST_REQUIRED") == "x"
    monkeypatch.delenv("WS_TEST_REQUIRED")
    with pytest.raises(ConfigError, match="WS_TEST_REQUIRED not set"):
        require_env("WS_TEST_REQUIRED")
