import json
from pathlib import Path

from pydantic import ValidationError

from src.core.config.env import load_env_from_path
from src.core.config.models import WorkspaceConfig
from src.core.exceptions import ConfigError


def load_workspace_config(config_path: str | Path, project_root: Path | None = None) -> WorkspaceConfig:
    root = project_root or Path.cwd()
    path = Path(config_path) if not isinstance(config_path, Path) else config_path
    if not path.is_absolute():
        path = root / path
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        raw = path.read_text(encoding="utf-8")
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    try:
        config = WorkspaceConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config schema in {path}: {e}") from e
    ids = [a.id for a in config.agents]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        raise ConfigError(f"Duplicate agent ids in {path}: {', '.join(dupes)}")
    load_env_from_path(config.env_file_path, root)
    return config
