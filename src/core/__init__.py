from src.core.config.loader import load_workspace_config
from src.core.config.models import ExecutionConfig, WorkspaceConfig
from src.core.exceptions import (
    CompletionError,
    ConfigError,
    NoSpecialistsError,
    OrchestrationError,
    OrchestratorNotFoundError,
    PlanError,
    StepTimeoutError,
)

__all__ = [
    "load_workspace_config",
    "ExecutionConfig",
    "WorkspaceConfig",
    "CompletionError",
    "ConfigError",
    "NoSpecialistsError",
    "OrchestrationError",
    "OrchestratorNotFoundError",
    "PlanError",
    "StepTimeoutError",
]
