class ConfigError(Exception):
    """Raised when config loading or validation fails."""


class OrchestrationError(Exception):
    """Raised when a run cannot proceed at all (fatal, run-level)."""


class OrchestratorNotFoundError(OrchestrationError):
    """Raised when the run's orchestrator id is not among the known agents."""


class NoSpecialistsError(OrchestrationError):
    """Raised when an orchestrator has no allowed specialists to delegate to."""


class PlanError(OrchestrationError):
    """Raised when the orchestrator's plan cannot be obtained or parsed."""


class CompletionError(Exception):
    """Raised when the completion capability fails (network, provider, bad payload)."""


class StepTimeoutError(Exception):
    """Raised when a single step attempt exceeds its time budget."""
