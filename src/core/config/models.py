from __future__ import annotations

from pydantic import BaseModel, Field

from src.core.contracts.agent import Agent


class ExecutionConfig(BaseModel):
    max_retries: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)
    step_timeout_ms: int = Field(default=60000, gt=0)
    enable_parallel: bool = True


class LLMConfig(BaseModel):
    base_url: str = "https://openrouter.ai/api/v1"
    api_key_env: str = "OPENROUTER_API_KEY"  # env var name
    site_url: str | None = None
    site_name: str | None = "NHP"
    request_timeout_s: float = 120.0


class KnowledgeConfig(BaseModel):
    persist_directory_env: str = "KNOWLEDGE_PERSIST_DIR"  # env var name
    collection_name: str = "knowledge"
    k: int = 5


class WorkspaceConfig(BaseModel):
    workspace_id: str = "default"
    env_file_path: str | None = None
    agents: list[Agent] = Field(default_factory=list)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    knowledge: KnowledgeConfig | None = None

    def get_agent(self, agent_id: str) -> Agent | None:
        for a in self.agents:
            if a.id == agent_id:
                return a
        return None

    def orchestrators(self) -> list[Agent]:
        return [a for a in self.agents if a.is_orchestrator]
