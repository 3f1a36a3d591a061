from src.core.config.loader import load_workspace_config
from src.core.config.models import ExecutionConfig, KnowledgeConfig, LLMConfig, WorkspaceConfig
from src.core.config.env import load_default_env, require_env

__all__ = [
    "load_workspace_config",
    "ExecutionConfig",
    "KnowledgeConfig",
    "LLMConfig",
    "WorkspaceConfig",
    "load_default_env",
    "require_env",
]
