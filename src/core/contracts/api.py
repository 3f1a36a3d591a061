from typing import Any

from pydantic import BaseModel


class RunRequest(BaseModel):
    orchestrator_id: str
    goal: str
    context: dict[str, Any] | None = None
    wait: bool = False


class RunAccepted(BaseModel):
    run_id: str
    status: str  # "pending" | "running" | "completed" | "failed"
    consolidated_output: str | None = None
    error: str | None = None
