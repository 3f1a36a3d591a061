from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SourceKind(str, Enum):
    USER_INPUT = "user_input"
    STEP_OUTPUT = "steps"
    CONTEXT = "context"
    LAST_OUTPUT = "last_output"
    ALL_OUTPUTS = "all_outputs"
    LITERAL = "literal"


class SourceRef(BaseModel):
    """Parsed form of one input-mapping source path, e.g. ``steps.step1.output.text``."""

    model_config = ConfigDict(frozen=True)

    kind: SourceKind
    step_id: str | None = None
    field: str | None = None
    value: str | None = None
    malformed: bool = False

    @classmethod
    def parse(cls, path: str) -> "SourceRef":
        parts = path.split(".")
        head = parts[0]
        if head == "user_input":
            return cls(kind=SourceKind.USER_INPUT, field=parts[1] if len(parts) > 1 else None)
        if head == "context":
            return cls(kind=SourceKind.CONTEXT, field=parts[1] if len(parts) > 1 else None)
        if head == "last_output":
            return cls(kind=SourceKind.LAST_OUTPUT, field=parts[1] if len(parts) > 1 else None)
        if head == "all_outputs":
            return cls(kind=SourceKind.ALL_OUTPUTS)
        if head == "steps":
            step_id = parts[1] if len(parts) > 1 and parts[1] else None
            has_output = len(parts) > 2 and parts[2] == "output"
            return cls(
                kind=SourceKind.STEP_OUTPUT,
                step_id=step_id,
                field=parts[3] if has_output and len(parts) > 3 else None,
                malformed=step_id is None or not has_output,
            )
        return cls(kind=SourceKind.LITERAL, value=path)


class PlanStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    agent_id: str
    agent_name: str
    description: str = ""
    input_mapping: dict[str, str] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    priority: int = 0
    # Filled from input_mapping when the step is built
    sources: dict[str, SourceRef] = Field(default_factory=dict, exclude=True)

    @model_validator(mode="after")
    def _parse_sources(self) -> "PlanStep":
        if not self.sources and self.input_mapping:
            parsed = {target: SourceRef.parse(path) for target, path in self.input_mapping.items()}
            object.__setattr__(self, "sources", parsed)
        return self

    def malformed_sources(self) -> list[str]:
        return [self.input_mapping[t] for t, ref in self.sources.items() if ref.malformed]

    def references_steps(self) -> bool:
        return any(ref.kind is SourceKind.STEP_OUTPUT for ref in self.sources.values())


class ExecutionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    goal: str
    reasoning: str = ""
    steps: list[PlanStep] = Field(default_factory=list)
    estimated_steps: int = 0
    strategy: Literal["sequential", "parallel", "mixed"] = "sequential"

    def step_ids(self) -> list[str]:
        return [s.step_id for s in self.steps]
