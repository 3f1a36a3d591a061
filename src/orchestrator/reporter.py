"""Consolidate completed step outputs into the run's final answer."""
from __future__ import annotations

import json
import logging

from langchain_core.prompts import ChatPromptTemplate

from src.core.contracts.agent import Agent
from src.core.contracts.run import Step
from src.llm.client import CompletionClient

log = logging.getLogger("reporter")

NO_RESULTS = "No results"
SUMMARY_TEMPERATURE = 0.3

SYSTEM = "You are a consolidator. Merge the agent outputs into one coherent answer. Do not invent information."

PROMPT = """You are consolidating results from multiple agents.

## ORIGINAL GOAL
{goal}

## AGENT OUTPUTS
{outputs}

Provide a coherent, consolidated response that addresses the original goal."""

SUMMARY_PROMPT = ChatPromptTemplate.from_messages([
    ("system", SYSTEM),
    ("human", PROMPT),
])


def _dump(output: object) -> str:
    return json.dumps(output, indent=2, ensure_ascii=False, default=str)


def completed_steps(steps: list[Step]) -> list[Step]:
    return [s for s in steps if s.status == "completed" and s.output is not None]


def concatenate(steps: list[Step]) -> str:
    return "\n\n".join(f"## {s.agent_name}\n{_dump(s.output)}" for s in completed_steps(steps))


def best_of_n(steps: list[Step]) -> str:
    done = completed_steps(steps)
    return _dump(done[-1].output) if done else NO_RESULTS


async def summarize(orchestrator: Agent, goal: str, steps: list[Step], client: CompletionClient) -> str:
    done = completed_steps(steps)
    if not done:
        return NO_RESULTS
    outputs = "\n".join(f"### {s.agent_name}\n{_dump(s.output)}\n" for s in done)
    response = await client.chat(
        orchestrator.model,
        SUMMARY_PROMPT.format_messages(goal=goal, outputs=outputs),
        temperature=SUMMARY_TEMPERATURE,
    )
    return response.content


async def consolidate(
    orchestrator: Agent,
    goal: str,
    steps: list[Step],
    client: CompletionClient,
    strategy: str = "summarize",
) -> str:
    if strategy == "concatenate":
        return concatenate(steps)
    if strategy == "summarize":
        return await summarize(orchestrator, goal, steps, client)
    return best_of_n(steps)
