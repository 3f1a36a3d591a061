"""Build an ExecutionPlan: asked from the orchestrator's LLM, or derived from its specialist order."""
from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.messages import BaseMessage
from langchain_core.prompts import ChatPromptTemplate, PromptTemplate

from src.core.contracts.agent import Agent
from src.core.contracts.orchestrator import ExecutionPlan, PlanStep
from src.core.exceptions import NoSpecialistsError, PlanError
from src.agent.validation import coerce_number
from src.llm.client import CompletionClient
from src.llm.parsing import extract_json_object

log = logging.getLogger("planner")

DEFAULT_SYSTEM = "You are an orchestrator that plans task execution by delegating to specialists."
PLANNER_TEMPERATURE_DEFAULT = 0.7
PLANNER_MAX_TOKENS = 2048

PLAN_SCHEMA: dict[str, Any] = {
    "name": "execution_plan",
    "strict": False,
    "schema": {
        "type": "object",
        "properties": {
            "reasoning": {"type": "string"},
            "steps": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "stepId": {"type": "string"},
                        "agentId": {"type": "string"},
                        "description": {"type": "string"},
                        "inputMapping": {"type": "object"},
                        "dependsOn": {"type": "array", "items": {"type": "string"}},
                    },
                    "required": ["stepId", "agentId", "description"],
                },
            },
            "strategy": {"type": "string", "enum": ["sequential", "parallel", "mixed"]},
        },
        "required": ["steps"],
    },
}

PLAN_FORMAT = PromptTemplate.from_template("""{{
  "reasoning": "short analysis of what needs to be done",
  "steps": [
    {{
      "stepId": "step1",
      "agentId": "{example_id}",
      "description": "what this step does",
      "inputMapping": {{ "task": "user_input.goal" }},
      "dependsOn": []
    }}
  ],
  "strategy": "sequential"
}}""")

PLANNING_PROMPT = """Plan how to reach the user's goal by delegating to the specialists below.

## USER GOAL
{goal}

## AVAILABLE SPECIALISTS
{agent_list}

## RULES
1. Always set "agentId" to the EXACT id of a specialist (e.g. "{example_id}")
2. Each step uses ONE specialist
3. Use "user_input.goal" to pass the original goal
4. To use an earlier result, map "steps.<stepId>.output.<field>" (or "steps.<stepId>.output" for all of it)
5. "dependsOn" lists the stepIds whose output the step needs
{context_block}
Reply ONLY with the JSON plan:
{plan_format}"""

SYSTEM_RULES = """{base}

IMPORTANT: Reply ONLY with valid JSON. No markdown, no explanations outside the JSON.

VALID AGENT IDS: {id_list}

The JSON MUST have this structure:
{plan_format}

CRITICAL RULE: "agentId" MUST be one of the ids listed above: {id_list}"""

PLAN_PROMPT = ChatPromptTemplate.from_messages([
    ("system", SYSTEM_RULES),
    ("human", PLANNING_PROMPT),
])


def available_specialists(orchestrator: Agent, agents: list[Agent]) -> list[Agent]:
    """Specialists the orchestrator may call, in its allowed_agents order."""
    by_id = {a.id: a for a in agents if a.type == "specialist"}
    return [by_id[i] for i in orchestrator.allowed_agents if i in by_id]


def _required_inputs(agent: Agent) -> str:
    required = [f"{f.name} ({f.type})" for f in agent.input_schema if f.required]
    return ", ".join(required) if required else "none"


def _agent_list(specialists: list[Agent]) -> str:
    return "\n".join(
        f'- ID: "{a.id}" | Name: {a.name} | Role: {a.role} | Does: {a.description or a.role} '
        f"| Required inputs: {_required_inputs(a)}"
        for a in specialists
    ) or "(no specialists available)"


def build_plan_messages(
    orchestrator: Agent,
    goal: str,
    specialists: list[Agent],
    context: dict[str, Any] | None = None,
) -> list[BaseMessage]:
    """System rules plus the planning request, rendered from PLAN_PROMPT."""
    example_id = specialists[0].id if specialists else "AGENT_ID"
    context_block = ""
    if context:
        context_block = f"\n## ADDITIONAL CONTEXT\n{json.dumps(context, indent=2, ensure_ascii=False, default=str)}\n"
    return PLAN_PROMPT.format_messages(
        base=orchestrator.system_prompt or DEFAULT_SYSTEM,
        id_list=", ".join(f'"{a.id}"' for a in specialists) or "(none)",
        goal=goal,
        agent_list=_agent_list(specialists),
        example_id=example_id,
        context_block=context_block,
        plan_format=PLAN_FORMAT.format(example_id=example_id),
    )


async def _try_structured_plan(
    orchestrator: Agent, messages: list[BaseMessage], client: CompletionClient
) -> dict[str, Any] | None:
    """Stage 1: schema-constrained call. None when the model/provider rejects it."""
    try:
        response = await client.chat_with_schema(
            orchestrator.model,
            messages,
            PLAN_SCHEMA,
            temperature=coerce_number(orchestrator.temperature, PLANNER_TEMPERATURE_DEFAULT),
        )
    except Exception as e:
        log.info("structured plan unavailable (%s); falling back to free-form", e)
        return None
    if not isinstance(response.data, dict) or not isinstance(response.data.get("steps"), list):
        log.info("structured plan had no steps array; falling back to free-form")
        return None
    return response.data


async def _try_freeform_plan(
    orchestrator: Agent, messages: list[BaseMessage], client: CompletionClient
) -> dict[str, Any]:
    """Stage 2: plain call and extraction of the first JSON object. Raises PlanError."""
    try:
        response = await client.chat(
            orchestrator.model,
            messages,
            temperature=coerce_number(orchestrator.temperature, PLANNER_TEMPERATURE_DEFAULT),
            max_tokens=PLANNER_MAX_TOKENS,
        )
    except Exception as e:
        raise PlanError(f"Orchestrator planning call failed: {e}") from e
    raw = extract_json_object(response.content)
    if raw is None:
        raise PlanError("Orchestrator did not return valid JSON plan")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise PlanError("Failed to parse orchestrator plan JSON") from e
    if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
        raise PlanError("Orchestrator plan missing steps array")
    return data


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


def sanitize_dependencies(steps: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop unknown and self references; the first step never depends on anything."""
    valid = {s["step_id"] for s in steps}
    for index, s in enumerate(steps):
        if index == 0:
            s["depends_on"] = []
            continue
        seen: list[str] = []
        for dep in s["depends_on"]:
            if dep in valid and dep != s["step_id"] and dep not in seen:
                seen.append(dep)
        s["depends_on"] = seen
    return steps


def normalize_plan(
    data: dict[str, Any],
    goal: str,
    specialists: list[Agent],
    max_steps: int | None = None,
) -> ExecutionPlan:
    raw_steps = [s for s in data.get("steps") or [] if isinstance(s, dict)]
    if max_steps and len(raw_steps) > max_steps:
        log.warning("plan has %s steps; keeping the first %s", len(raw_steps), max_steps)
        raw_steps = raw_steps[:max_steps]
    if not raw_steps:
        raise PlanError("Orchestrator plan contains no steps")

    names = {a.id: a.name for a in specialists}
    steps: list[dict[str, Any]] = []
    used: set[str] = set()
    for i, s in enumerate(raw_steps):
        step_id = _as_str(s.get("stepId") or s.get("step_id")).strip()
        if not step_id or step_id in used:
            step_id = f"step{i + 1}"
            n = 1
            while step_id in used:
                n += 1
                step_id = f"step{i + 1}_{n}"
        used.add(step_id)
        agent_id = _as_str(s.get("agentId") or s.get("agent_id"))
        mapping = s.get("inputMapping") or s.get("input_mapping")
        deps = s.get("dependsOn") or s.get("depends_on")
        steps.append(
            {
                "step_id": step_id,
                "agent_id": agent_id,
                "agent_name": names.get(agent_id, agent_id),
                "description": _as_str(s.get("description")),
                "input_mapping": {str(k): _as_str(v) for k, v in mapping.items()} if isinstance(mapping, dict) else {},
                "depends_on": [str(d) for d in deps] if isinstance(deps, list) else [],
                "priority": i,
            }
        )
    sanitize_dependencies(steps)

    strategy = data.get("strategy")
    plan = ExecutionPlan(
        goal=goal,
        reasoning=_as_str(data.get("reasoning")) or "No reasoning provided",
        steps=[PlanStep(**s) for s in steps],
        estimated_steps=len(steps),
        strategy=strategy if strategy in ("sequential", "parallel", "mixed") else "sequential",
    )
    for ps in plan.steps:
        bad = ps.malformed_sources()
        if bad:
            log.warning("step %s has malformed input paths: %s", ps.step_id, ", ".join(bad))
    return plan


async def create_execution_plan(
    orchestrator: Agent,
    goal: str,
    specialists: list[Agent],
    client: CompletionClient,
    context: dict[str, Any] | None = None,
) -> ExecutionPlan:
    """Ask the orchestrator's model for a plan (structured first, then free-form)."""
    if not specialists:
        raise NoSpecialistsError(f"Orchestrator {orchestrator.name} has no specialists available")
    messages = build_plan_messages(orchestrator, goal, specialists, context)
    data = await _try_structured_plan(orchestrator, messages, client)
    if data is None:
        data = await _try_freeform_plan(orchestrator, messages, client)
    max_steps = orchestrator.orchestration_config.max_steps if orchestrator.orchestration_config else None
    plan = normalize_plan(data, goal, specialists, max_steps=max_steps)
    log.info("PLAN %s", [(s.step_id, s.agent_id, s.agent_name, s.depends_on) for s in plan.steps])
    return plan


def build_fixed_plan(goal: str, specialists: list[Agent], mode: str) -> ExecutionPlan:
    """Plan without an LLM call: one step per specialist, chained (sequential) or independent (parallel)."""
    if not specialists:
        raise NoSpecialistsError("No specialists available for this orchestrator")
    parallel = mode == "parallel"
    steps = [
        PlanStep(
            step_id=f"step{i + 1}",
            agent_id=a.id,
            agent_name=a.name,
            description=f"Run {a.name}",
            input_mapping={},
            depends_on=[] if parallel or i == 0 else [f"step{i}"],
            priority=i,
        )
        for i, a in enumerate(specialists)
    ]
    return ExecutionPlan(
        goal=goal,
        reasoning="Running all specialists in parallel" if parallel else "Running specialists as a sequential chain",
        steps=steps,
        estimated_steps=len(steps),
        strategy="parallel" if parallel else "sequential",
    )
