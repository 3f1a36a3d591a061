"""Run-scoped state: the Run being executed plus the callbacks that observe it."""
from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from src.core.contracts.run import Artifact, LogLevel, LogPhase, Run, RunLog, Step

LogCallback = Callable[[RunLog], None]
StepCallback = Callable[[Step], None]
RunCallback = Callable[[dict[str, Any]], None]


def generate_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_run(
    orchestrator_id: str,
    orchestrator_name: str,
    goal: str,
    context: dict[str, Any] | None = None,
) -> Run:
    return Run(
        id=f"run-{generate_id()}",
        orchestrator_id=orchestrator_id,
        orchestrator_name=orchestrator_name,
        goal=goal,
        context=context,
        status="pending",
        start_time=timestamp(),
    )


def _snapshot(value: Any) -> Any:
    if isinstance(value, list):
        return [_snapshot(v) for v in value]
    if hasattr(value, "model_copy"):
        return value.model_copy(deep=True)
    return value


class RunRecorder:
    """Owns one Run and applies every log/step/run change to it before notifying the caller.

    Callers get copies (a RunLog, a Step, or a dict of changed Run fields), so nothing
    outside the engine holds a reference into the live run.
    """

    def __init__(
        self,
        run: Run,
        on_log: LogCallback | None = None,
        on_step_update: StepCallback | None = None,
        on_run_update: RunCallback | None = None,
    ) -> None:
        self.run = run
        self._on_log = on_log
        self._on_step_update = on_step_update
        self._on_run_update = on_run_update

    def log(
        self,
        agent_name: str,
        message: str,
        phase: LogPhase,
        level: LogLevel = "info",
        step_id: str | None = None,
        artifact: Artifact | None = None,
        agent_avatar: str | None = None,
    ) -> RunLog:
        entry = RunLog(
            id=generate_id(),
            step_id=step_id,
            agent_name=agent_name,
            agent_avatar=agent_avatar,
            timestamp=timestamp(),
            level=level,
            message=message,
            phase=phase,
            artifact=artifact,
        )
        self.run.logs.append(entry)
        if self._on_log:
            self._on_log(entry.model_copy(deep=True))
        return entry

    def update_step(self, step: Step) -> None:
        if not any(s is step for s in self.run.steps):
            for i, existing in enumerate(self.run.steps):
                if existing.id == step.id:
                    self.run.steps[i] = step
                    break
            else:
                self.run.steps.append(step)
        if self._on_step_update:
            self._on_step_update(step.model_copy(deep=True))

    def update_run(self, **changes: Any) -> None:
        for key, value in changes.items():
            setattr(self.run, key, value)
        if self._on_run_update:
            self._on_run_update({k: _snapshot(v) for k, v in changes.items()})
