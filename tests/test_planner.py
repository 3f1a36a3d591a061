from __future__ import annotations

import json

import pytest

from src.core.exceptions import NoSpecialistsError, PlanError
from src.orchestrator.planner import (
    available_specialists,
    build_fixed_plan,
    build_plan_messages,
    create_execution_plan,
    normalize_plan,
)
from tests.helpers.stubs import StubCompletionClient, make_orchestrator, make_specialist, plan_json, required

SPECIALISTS = [make_specialist("alpha"), make_specialist("beta"), make_specialist("gamma")]


def test_available_specialists_follow_allowed_order_and_skip_orchestrators() -> None:
    boss = make_orchestrator(["gamma", "boss", "missing", "alpha"])
    other_boss = make_orchestrator([], agent_id="other")
    agents = [*SPECIALISTS, boss, other_boss]
    assert [a.id for a in available_specialists(boss, agents)] == ["gamma", "alpha"]


def test_fixed_sequential_plan_chains_each_step() -> None:
    plan = build_fixed_plan("g", SPECIALISTS, "sequential")
    assert plan.strategy == "sequential"
    assert plan.step_ids() == ["step1", "step2", "step3"]
    assert [s.depends_on for s in plan.steps] == [[], ["step1"], ["step2"]]
    assert [s.agent_id for s in plan.steps] == ["alpha", "beta", "gamma"]
    assert all(s.input_mapping == {} for s in plan.steps)


def test_fixed_parallel_plan_has_no_dependencies() -> None:
    plan = build_fixed_plan("g", SPECIALISTS, "parallel")
    assert plan.strategy == "parallel"
    assert all(s.depends_on == [] for s in plan.steps)


def test_fixed_plan_requires_specialists() -> None:
    with pytest.raises(NoSpecialistsError):
        build_fixed_plan("g", [], "sequential")


def test_normalize_sanitizes_dependencies() -> None:
    data = {
        "steps": [
            {"stepId": "a", "agentId": "alpha", "description": "first", "dependsOn": ["b"]},
            {"stepId": "b", "agentId": "beta", "dependsOn": ["a", "b", "zzz", "a"]},
            {"stepId": "c", "agentId": "gamma", "dependsOn": ["a", "b"]},
        ]
    }
    plan = normalize_plan(data, "g", SPECIALISTS)
    assert [s.depends_on for s in plan.steps] == [[], ["a"], ["a", "b"]]
    assert plan.reasoning == "No reasoning provided"
    assert plan.strategy == "sequential"
    assert plan.steps[1].agent_name == "Beta"


def test_normalize_renames_missing_and_duplicate_ids() -> None:
    data = {
        "steps": [
            {"stepId": "x", "agentId": "alpha"},
            {"stepId": "x", "agentId": "beta"},
            {"agentId": "gamma"},
        ]
    }
    plan = normalize_plan(data, "g", SPECIALISTS)
    assert plan.step_ids() == ["x", "step2", "step3"]


def test_normalize_accepts_snake_case_keys_and_keeps_unknown_agent() -> None:
    data = {
        "reasoning": "r",
        "strategy": "mixed",
        "steps": [{"step_id": "s1", "agent_id": "ghost", "input_mapping": {"task": "user_input.goal"}}],
    }
    plan = normalize_plan(data, "g", SPECIALISTS)
    step = plan.steps[0]
    assert (step.agent_id, step.agent_name) == ("ghost", "ghost")
    assert step.input_mapping == {"task": "user_input.goal"}
    assert plan.strategy == "mixed"


def test_normalize_truncates_to_max_steps() -> None:
    data = {"steps": [{"stepId": f"s{i}", "agentId": "alpha"} for i in range(5)]}
    plan = normalize_plan(data, "g", SPECIALISTS, max_steps=2)
    assert plan.step_ids() == ["s0", "s1"]
    assert plan.estimated_steps == 2


def test_normalize_rejects_empty_plan() -> None:
    with pytest.raises(PlanError, match="no steps"):
        normalize_plan({"steps": []}, "g", SPECIALISTS)


def test_plan_messages_list_ids_and_required_inputs() -> None:
    agents = [make_specialist("alpha", input_schema=[required("topic")])]
    boss = make_orchestrator(["alpha"])
    system, human = build_plan_messages(boss, "find things", agents, {"lang": "en"})
    assert (system.type, human.type) == ("system", "human")
    assert 'VALID AGENT IDS: "alpha"' in system.content
    assert '"agentId": "alpha"' in system.content
    assert 'ID: "alpha"' in human.content
    assert "Required inputs: topic (string)" in human.content
    assert "ADDITIONAL CONTEXT" in human.content
    assert "find things" in human.content


def test_plan_messages_keep_braces_in_goal_and_system_prompt() -> None:
    boss = make_orchestrator(["alpha"]).model_copy(update={"system_prompt": "Plans look like {steps}"})
    system, human = build_plan_messages(boss, "render {title} as JSON", SPECIALISTS[:1])
    assert system.content.startswith("Plans look like {steps}")
    assert "render {title} as JSON" in human.content
    assert '"inputMapping": { "task": "user_input.goal" }' in human.content


@pytest.mark.asyncio
async def test_create_plan_uses_structured_output_when_available() -> None:
    boss = make_orchestrator(["alpha", "beta"], execution_mode="llm-planned")
    client = StubCompletionClient(
        structured={
            "test/boss": {
                "reasoning": "two steps",
                "strategy": "parallel",
                "steps": [
                    {"stepId": "s1", "agentId": "alpha", "description": "look"},
                    {"stepId": "s2", "agentId": "beta", "description": "write", "dependsOn": ["s1"]},
                ],
            }
        }
    )
    plan = await create_execution_plan(boss, "g", SPECIALISTS[:2], client)
    assert plan.step_ids() == ["s1", "s2"]
    assert plan.strategy == "parallel"
    assert [c["method"] for c in client.calls_for("test/boss")] == ["chat_with_schema"]


@pytest.mark.asyncio
async def test_create_plan_falls_back_to_freeform_json() -> None:
    boss = make_orchestrator(["alpha"], execution_mode="llm-planned")
    reply = "Sure! Here is the plan:\n" + plan_json([{"stepId": "s1", "agentId": "alpha"}]) + "\nGood luck."
    client = StubCompletionClient(chat_replies={"test/boss": reply})
    plan = await create_execution_plan(boss, "g", SPECIALISTS[:1], client)
    assert plan.step_ids() == ["s1"]
    assert [c["method"] for c in client.calls_for("test/boss")] == ["chat_with_schema", "chat"]
    system = client.calls_for("test/boss")[-1]["messages"][0].content
    assert 'VALID AGENT IDS: "alpha"' in system


@pytest.mark.asyncio
async def test_structured_reply_without_steps_falls_back() -> None:
    boss = make_orchestrator(["alpha"], execution_mode="llm-planned")
    client = StubCompletionClient(
        structured={"test/boss": {"reasoning": "oops"}},
        chat_replies={"test/boss": plan_json([{"stepId": "s1", "agentId": "alpha"}])},
    )
    plan = await create_execution_plan(boss, "g", SPECIALISTS[:1], client)
    assert plan.step_ids() == ["s1"]


@pytest.mark.asyncio
async def test_create_plan_errors() -> None:
    boss = make_orchestrator(["alpha"], execution_mode="llm-planned")
    with pytest.raises(PlanError, match="did not return valid JSON"):
        await create_execution_plan(boss, "g", SPECIALISTS[:1], StubCompletionClient(chat_replies={"test/boss": "no idea"}))
    with pytest.raises(PlanError, match="missing steps"):
        await create_execution_plan(
            boss, "g", SPECIALISTS[:1], StubCompletionClient(chat_replies={"test/boss": json.dumps({"plan": []})})
        )
    with pytest.raises(PlanError, match="planning call failed"):
        await create_execution_plan(boss, "g", SPECIALISTS[:1], StubCompletionClient(failures={"test/boss": 5}))
    with pytest.raises(NoSpecialistsError):
        await create_execution_plan(boss, "g", [], StubCompletionClient())


@pytest.mark.asyncio
async def test_create_plan_applies_max_steps() -> None:
    boss = make_orchestrator(["alpha"], execution_mode="llm-planned", max_steps=1)
    client = StubCompletionClient(
        chat_replies={"test/boss": plan_json([{"stepId": "s1", "agentId": "alpha"}, {"stepId": "s2", "agentId": "alpha"}])}
    )
    plan = await create_execution_plan(boss, "g", SPECIALISTS[:1], client)
    assert plan.step_ids() == ["s1"]
