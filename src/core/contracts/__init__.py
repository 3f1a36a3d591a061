from src.core.contracts.api import RunAccepted, RunRequest
from src.core.contracts.agent import Agent, AgentResponse, OrchestrationConfig, SchemaField
from src.core.contracts.orchestrator import ExecutionPlan, PlanStep, SourceKind, SourceRef
from src.core.contracts.run import Artifact, Run, RunLog, Step

__all__ = [
    "RunRequest",
    "RunAccepted",
    "Agent",
    "AgentResponse",
    "OrchestrationConfig",
    "SchemaField",
    "ExecutionPlan",
    "PlanStep",
    "SourceKind",
    "SourceRef",
    "Artifact",
    "Run",
    "RunLog",
    "Step",
]
