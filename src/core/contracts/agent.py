from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

FieldType = Literal["string", "number", "boolean", "json", "array", "image", "file"]
ExecutionMode = Literal["sequential", "parallel", "llm-planned"]
ConsolidationStrategy = Literal["concatenate", "summarize", "best_of_n"]

# Older agent records used these spellings for the execution mode
_MODE_ALIASES = {
    "llm": "llm-planned",
    "llm_planned": "llm-planned",
    "sequencial": "sequential",
    "paralelo": "parallel",
}


class SchemaField(BaseModel):
    name: str
    type: FieldType = "string"
    description: str = ""
    required: bool = False
    default: Any = None


class OrchestrationConfig(BaseModel):
    max_steps: int = 10
    planning_strategy: Literal["sequential", "parallel", "dynamic"] = "sequential"
    evaluation_mode: Literal["none", "basic", "critic_loop"] = "none"
    consolidation_strategy: ConsolidationStrategy = "summarize"
    execution_mode: ExecutionMode = "sequential"
    allow_replanning: bool = False
    max_retries: int = 3

    @field_validator("execution_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _MODE_ALIASES.get(v.strip().lower(), v.strip().lower())
        return v


class Agent(BaseModel):
    id: str
    type: Literal["specialist", "orchestrator"] = "specialist"
    name: str
    role: str = ""
    description: str = ""
    avatar: str | None = None
    model: str
    provider: str = "openrouter"
    # Stored as entered in the agent form; coerced to numbers at call time
    temperature: Any = 0.7
    max_tokens: Any = None
    system_prompt: str = ""
    input_schema: list[SchemaField] = Field(default_factory=list)
    output_schema: list[SchemaField] = Field(default_factory=list)
    rag_enabled: bool = False
    knowledge_base_id: str | None = None
    allowed_agents: list[str] = Field(default_factory=list)
    orchestration_config: OrchestrationConfig | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("allowed_agents", mode="before")
    @classmethod
    def _allowed_as_str(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [str(x) for x in v]
        return v

    @property
    def is_orchestrator(self) -> bool:
        return self.type == "orchestrator"


class AgentResponse(BaseModel):
    """Uniform result of one specialist invocation."""

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    tokens_used: int | None = None
    cost: float | None = None
    warnings: list[str] = Field(default_factory=list)
