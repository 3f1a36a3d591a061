import os
from pathlib import Path

from dotenv import load_dotenv

from src.core.exceptions import ConfigError

DEFAULT_ENV_FILES = ("config/env/.env", ".env")


def load_env_from_path(env_file_path: str | None, project_root: Path | None = None) -> None:
    if not env_file_path:
        return
    root = project_root or Path.cwd()
    path = root / env_file_path
    if path.exists():
        load_dotenv(path, override=False)


def load_default_env(project_root: Path) -> Path | None:
    """Load the first default .env that exists under project_root; returns its path."""
    for rel in DEFAULT_ENV_FILES:
        p = project_root / rel
        if p.exists():
            load_dotenv(p, override=False)
            return p
    return None


def require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise ConfigError(f"{name} not set")
    return value
