"""Resolve a plan step's input mapping against what the run has produced so far."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.core.contracts.orchestrator import PlanStep, SourceKind, SourceRef
from src.core.contracts.run import Step

PREVIOUS_OUTPUT = "previous_output"
PREVIOUS_AGENT = "previous_agent"
TASK = "task"
GOAL = "goal"


@dataclass
class AccumulatedContext:
    """Working state for one run. Only the scheduler writes completed_steps."""

    user_input: dict[str, Any]
    completed_steps: dict[str, Step] = field(default_factory=dict)
    global_context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_run(cls, goal: str, context: dict[str, Any] | None) -> "AccumulatedContext":
        ctx = dict(context or {})
        return cls(user_input={GOAL: goal, **ctx}, global_context=ctx)

    @property
    def goal(self) -> Any:
        return self.user_input.get(GOAL)

    def last_completed(self) -> Step | None:
        if not self.completed_steps:
            return None
        return next(reversed(self.completed_steps.values()))


def _field(container: Any, name: str | None) -> Any:
    if name is None:
        return container
    if isinstance(container, dict):
        return container.get(name)
    return None


def _output_step(ref: SourceRef, acc: AccumulatedContext) -> Step | None:
    """Completed step a steps.* / last_output reference reads from, if it has produced output."""
    if ref.kind is SourceKind.LAST_OUTPUT:
        step = acc.last_completed()
    elif ref.malformed or ref.step_id is None:
        return None
    else:
        step = acc.completed_steps.get(ref.step_id)
    if step is None or step.output is None:
        return None
    return step


def resolve_source(ref: SourceRef, acc: AccumulatedContext) -> Any:
    """Value for one parsed source; None when the reference cannot be satisfied."""
    if ref.kind is SourceKind.USER_INPUT:
        return _field(acc.user_input, ref.field)
    if ref.kind is SourceKind.CONTEXT:
        return _field(acc.global_context, ref.field)
    if ref.kind in (SourceKind.STEP_OUTPUT, SourceKind.LAST_OUTPUT):
        step = _output_step(ref, acc)
        return _field(step.output, ref.field) if step is not None else None
    if ref.kind is SourceKind.ALL_OUTPUTS:
        return [
            {"step_id": s.id, "agent_name": s.agent_name, "output": s.output}
            for s in acc.completed_steps.values()
            if s.output is not None
        ]
    return ref.value


def resolve_mapping(sources: dict[str, SourceRef], acc: AccumulatedContext) -> dict[str, Any]:
    """Missing user_input/context fields resolve to None; step references with no output yet are left out."""
    resolved: dict[str, Any] = {}
    for target, ref in sources.items():
        if ref.kind in (SourceKind.STEP_OUTPUT, SourceKind.LAST_OUTPUT) and _output_step(ref, acc) is None:
            continue
        resolved[target] = resolve_source(ref, acc)
    return resolved


def resolve_input(plan_step: PlanStep, acc: AccumulatedContext) -> dict[str, Any]:
    """Concrete input for one step.

    Besides the explicit mapping: a step whose mapping never references ``steps.*``
    receives the latest completed output as ``previous_output``/``previous_agent``;
    an empty result falls back to ``{"task", "goal"}``; ``goal`` is always set.
    """
    resolved = resolve_mapping(plan_step.sources, acc)

    if not plan_step.references_steps():
        last = acc.last_completed()
        if last is not None and last.output is not None:
            resolved[PREVIOUS_OUTPUT] = last.output
            resolved[PREVIOUS_AGENT] = last.agent_name

    if not resolved:
        resolved = {TASK: plan_step.description or acc.goal, GOAL: acc.goal}

    if not resolved.get(GOAL):
        resolved[GOAL] = acc.goal
    return resolved
