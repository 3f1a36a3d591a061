from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

StepStatus = Literal["pending", "running", "completed", "failed", "skipped"]
RunStatus = Literal["pending", "running", "completed", "failed"]
LogLevel = Literal["info", "warn", "error", "success", "debug"]
LogPhase = Literal["PLANNING", "DELEGATION", "INPUT", "PROCESS", "ACTION", "OUTPUT", "EVALUATION"]


class Artifact(BaseModel):
    type: Literal["text", "code", "json", "image", "markdown"]
    content: str
    label: str
    language: str | None = None


class RunLog(BaseModel):
    id: str
    step_id: str | None = None
    agent_name: str
    agent_avatar: str | None = None
    timestamp: str
    level: LogLevel = "info"
    message: str
    phase: LogPhase
    artifact: Artifact | None = None


class Step(BaseModel):
    id: str
    agent_id: str
    agent_name: str
    status: StepStatus = "pending"
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] | None = None
    started_at: str | None = None
    completed_at: str | None = None
    duration: int | None = None  # ms
    tokens_used: int | None = None
    cost: float | None = None
    error: str | None = None
    retry_count: int = 0
    description: str = ""
    depends_on: list[str] = Field(default_factory=list)


class Run(BaseModel):
    id: str
    orchestrator_id: str
    orchestrator_name: str
    goal: str
    context: dict[str, Any] | None = None
    status: RunStatus = "pending"
    current_step_id: str | None = None
    steps: list[Step] = Field(default_factory=list)
    logs: list[RunLog] = Field(default_factory=list)
    consolidated_output: str | None = None
    start_time: str
    end_time: str | None = None
    total_tokens: int | None = None
    cost: float = 0.0
