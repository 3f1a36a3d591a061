"""Execute a run: plan, schedule steps (sequential or in dependency waves), consolidate."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass

from src.agent.worker import invoke_specialist
from src.core.config.models import ExecutionConfig
from src.core.contracts.agent import Agent, AgentResponse, OrchestrationConfig
from src.core.contracts.orchestrator import ExecutionPlan, PlanStep
from src.core.contracts.run import Artifact, Run, Step
from src.core.exceptions import NoSpecialistsError, OrchestratorNotFoundError
from src.knowledge.base import KnowledgeSource
from src.llm.client import CompletionClient
from src.orchestrator.planner import available_specialists, build_fixed_plan, create_execution_plan
from src.orchestrator.recorder import LogCallback, RunCallback, RunRecorder, StepCallback, timestamp
from src.orchestrator.reporter import concatenate, consolidate
from src.orchestrator.resolver import AccumulatedContext, resolve_input
from src.orchestrator.retry import with_retry, with_timeout

log = logging.getLogger("executor")

POLL_INTERVAL_S = 0.1


@dataclass
class ExecutionContext:
    run: Run
    agents: list[Agent]
    client: CompletionClient
    knowledge: KnowledgeSource | None = None
    on_log: LogCallback | None = None
    on_step_update: StepCallback | None = None
    on_run_update: RunCallback | None = None


class StepAttemptError(Exception):
    """An invocation attempt came back unsuccessful."""


def _preview(value: object, limit: int = 150) -> str:
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    return (text[:limit] + "…") if len(text) > limit else text


def find_agent(plan_step: PlanStep, specialists: list[Agent]) -> Agent | None:
    """Match by id, then by case-insensitive name against the step's agent name or id."""
    for a in specialists:
        if a.id == plan_step.agent_id:
            return a
    wanted = {plan_step.agent_name.lower(), plan_step.agent_id.lower()}
    for a in specialists:
        if a.name.lower() in wanted:
            log.info("agent matched by name: %s (id %s)", a.name, a.id)
            return a
    return None


class RunExecutor:
    def __init__(
        self,
        ctx: ExecutionContext,
        config: ExecutionConfig,
        recorder: RunRecorder,
        orchestrator: Agent,
        specialists: list[Agent],
    ) -> None:
        self.ctx = ctx
        self.config = config
        self.recorder = recorder
        self.orchestrator = orchestrator
        self.specialists = specialists
        self.acc = AccumulatedContext.for_run(ctx.run.goal, ctx.run.context)
        self.steps: dict[str, Step] = {}

    def _log(self, message: str, phase: str, level: str = "info", step_id: str | None = None, **kw) -> None:
        self.recorder.log(
            self.orchestrator.name, message, phase, level, step_id, agent_avatar=self.orchestrator.avatar, **kw
        )

    def _mark_skipped(self, step: Step, reason: str) -> None:
        step.status = "skipped"
        step.error = reason
        self.recorder.update_step(step)

    async def _invoke_with_retry(self, step: Step, agent: Agent) -> AgentResponse:
        timeout_s = self.config.step_timeout_ms / 1000
        reported_warnings = False

        async def attempt() -> AgentResponse:
            nonlocal reported_warnings
            response = await with_timeout(
                invoke_specialist(agent, step.input, self.ctx.client, self.ctx.knowledge),
                timeout_s,
                f"Step {step.id} timed out after {timeout_s:g}s",
            )
            if not reported_warnings:
                # Input problems are the same on every attempt
                reported_warnings = True
                for problem in response.warnings:
                    self.recorder.log(agent.name, f"Input check: {problem}", "INPUT", "warn", step.id)
            if not response.success or response.output is None:
                raise StepAttemptError(response.error or "Unknown error")
            return response

        def on_retry(attempt_no: int, error: BaseException) -> None:
            step.retry_count = attempt_no
            self.recorder.log(
                agent.name,
                f"Attempt {attempt_no} failed: {error}. Retrying...",
                "PROCESS",
                "warn",
                step.id,
                agent_avatar=agent.avatar,
            )

        return await with_retry(attempt, self.config.max_retries, self.config.retry_delay_ms / 1000, on_retry)

    async def run_step(self, plan_step: PlanStep) -> bool:
        """Execute one step end to end; True when it completed. Never raises on step errors."""
        step = self.steps[plan_step.step_id]
        agent = find_agent(plan_step, self.specialists)
        if agent is None:
            available = ", ".join(a.id for a in self.specialists)
            step.status = "failed"
            step.error = f'Agent "{plan_step.agent_id}" not found; available ids are: {available}'
            step.completed_at = timestamp()
            self.recorder.update_step(step)
            self._log(f"Error: agent {plan_step.agent_id} not found", "DELEGATION", "error", step.id)
            return False

        step.input = resolve_input(plan_step, self.acc)
        step.status = "running"
        step.started_at = timestamp()
        self.recorder.update_step(step)
        self._log(f"Delegating to {agent.name}: {plan_step.description}", "DELEGATION", "info", step.id)
        self.recorder.log(agent.name, "Processing...", "PROCESS", "info", step.id, agent_avatar=agent.avatar)
        log.info("→ %s [%s]: %s", agent.name, step.id, _preview(step.input, 100))

        start = time.perf_counter()
        try:
            response = await self._invoke_with_retry(step, agent)
        except Exception as e:
            step.status = "failed"
            step.error = str(e) or type(e).__name__
            step.completed_at = timestamp()
            step.duration = int((time.perf_counter() - start) * 1000)
            log.warning("← %s [%s]: failed %s (%s ms)", agent.name, step.id, step.error, step.duration)
            self.recorder.log(
                agent.name,
                f"Error after {step.retry_count + 1} attempt(s): {step.error}",
                "OUTPUT",
                "error",
                step.id,
                agent_avatar=agent.avatar,
            )
            self.recorder.update_step(step)
            return False

        step.status = "completed"
        step.output = response.output
        step.completed_at = timestamp()
        step.duration = int((time.perf_counter() - start) * 1000)
        step.tokens_used = response.tokens_used
        step.cost = response.cost
        log.info("← %s [%s]: %s (%s ms)", agent.name, step.id, _preview(step.output), step.duration)
        image_url = step.output.get("image_url") if step.output is not None else None
        artifact = (
            Artifact(type="image", label="Image", content=image_url)
            if isinstance(image_url, str) and image_url
            else Artifact(type="json", label="Output", content=json.dumps(step.output, indent=2, ensure_ascii=False, default=str))
        )
        self.recorder.log(
            agent.name,
            f"Output generated ({step.duration / 1000:.1f}s)",
            "OUTPUT",
            "success",
            step.id,
            artifact=artifact,
            agent_avatar=agent.avatar,
        )
        self.recorder.update_step(step)
        return True

    def _record_completed(self, step_id: str) -> None:
        self.acc.completed_steps[step_id] = self.steps[step_id]

    async def run_sequential(self, plan: ExecutionPlan) -> None:
        self._log("Executing in sequential mode", "PROCESS")
        completed: set[str] = set()
        for index, plan_step in enumerate(plan.steps):
            deps_met = all(d in completed for d in plan_step.depends_on)
            # Lenient: a completed predecessor is enough even if declared deps are not
            previous_done = index == 0 or plan.steps[index - 1].step_id in completed
            if not deps_met and not previous_done:
                self._mark_skipped(self.steps[plan_step.step_id], "Dependencies not satisfied")
                self._log(
                    f"Step {plan_step.step_id} skipped: dependencies {', '.join(plan_step.depends_on)} not satisfied",
                    "DELEGATION",
                    "warn",
                    plan_step.step_id,
                )
                continue
            self.recorder.update_run(current_step_id=plan_step.step_id)
            if await self.run_step(plan_step):
                completed.add(plan_step.step_id)
                self._record_completed(plan_step.step_id)

    async def run_parallel(self, plan: ExecutionPlan) -> None:
        self._log("Executing in parallel mode", "PROCESS")
        completed: set[str] = set()
        finished: set[str] = set()
        running: set[str] = set()
        while len(finished) < len(plan.steps):
            ready = [
                ps
                for ps in plan.steps
                if ps.step_id not in finished
                and ps.step_id not in running
                and all(d in completed for d in ps.depends_on)
            ]
            if not ready and not running:
                for ps in plan.steps:
                    if ps.step_id not in finished:
                        self._mark_skipped(self.steps[ps.step_id], "Dependencies failed")
                        self._log(f"Step {ps.step_id} skipped: dependencies failed", "DELEGATION", "warn", ps.step_id)
                        finished.add(ps.step_id)
                break
            if not ready:
                await asyncio.sleep(POLL_INTERVAL_S)
                continue

            wave = [ps.step_id for ps in ready]
            self._log(f"Running {len(wave)} step(s) in parallel: {', '.join(wave)}", "DELEGATION")
            running.update(wave)
            try:
                outcomes = await asyncio.gather(*(self.run_step(ps) for ps in ready))
            finally:
                running.difference_update(wave)
            for step_id, ok in zip(wave, outcomes):
                finished.add(step_id)
                if ok:
                    completed.add(step_id)
                    self._record_completed(step_id)

    async def run_plan(self, plan: ExecutionPlan) -> None:
        self.steps = {
            ps.step_id: Step(
                id=ps.step_id,
                agent_id=ps.agent_id,
                agent_name=ps.agent_name,
                description=ps.description,
                depends_on=list(ps.depends_on),
            )
            for ps in plan.steps
        }
        self.recorder.update_run(steps=list(self.steps.values()))
        if self.config.enable_parallel and plan.strategy in ("parallel", "mixed"):
            await self.run_parallel(plan)
        else:
            await self.run_sequential(plan)

    async def build_plan(self, orch_config: OrchestrationConfig) -> ExecutionPlan:
        run = self.ctx.run
        mode = orch_config.execution_mode
        if mode == "llm-planned":
            self._log("LLM building execution plan...", "PLANNING")
            plan = await create_execution_plan(self.orchestrator, run.goal, self.specialists, self.ctx.client, run.context)
        else:
            self._log(f"Using {mode} mode...", "PLANNING")
            plan = build_fixed_plan(run.goal, self.specialists, mode)
        for ps in plan.steps:
            for path in ps.malformed_sources():
                self._log(f"Step {ps.step_id}: input path '{path}' is malformed and will resolve to nothing", "PLANNING", "warn", ps.step_id)
        self._log(
            f"Plan created: {plan.reasoning} ({len(plan.steps)} steps)",
            "PLANNING",
            "success",
            artifact=Artifact(type="json", label="Plan", content=plan.model_dump_json(indent=2)),
        )
        return plan

    def evaluate(self, orch_config: OrchestrationConfig) -> None:
        if orch_config.evaluation_mode == "none":
            return
        steps = list(self.steps.values())
        done = [s for s in steps if s.status == "completed"]
        failed = [s for s in steps if s.status == "failed"]
        skipped = [s for s in steps if s.status == "skipped"]
        detail = "\n".join(f"- {s.id} ({s.agent_name}) {s.status}: {s.error}" for s in failed + skipped)
        self._log(
            f"Evaluation: {len(done)} completed, {len(failed)} failed, {len(skipped)} skipped",
            "EVALUATION",
            "warn" if failed or skipped else "success",
            artifact=Artifact(type="markdown", label="Evaluation", content=detail) if detail else None,
        )

    async def execute(self) -> Run:
        run = self.ctx.run
        orch_config = self.orchestrator.orchestration_config or OrchestrationConfig()

        self._log(
            f"{len(self.specialists)} specialist(s) available: "
            f"{', '.join(a.name for a in self.specialists)} | Mode: {orch_config.execution_mode}",
            "PLANNING",
        )
        plan = await self.build_plan(orch_config)
        await self.run_plan(plan)

        self._log("Consolidating results...", "EVALUATION")
        steps = list(self.steps.values())
        strategy = orch_config.consolidation_strategy
        try:
            consolidated = await consolidate(self.orchestrator, run.goal, steps, self.ctx.client, strategy)
        except Exception as e:
            self._log(f"Consolidation ({strategy}) failed: {e}; concatenating outputs instead", "EVALUATION", "warn")
            consolidated = concatenate(steps)
        self.evaluate(orch_config)

        completed = sum(1 for s in steps if s.status == "completed")
        has_failures = completed < len(steps)
        self._log(
            f"Execution finished ({completed}/{len(steps)} steps completed)",
            "OUTPUT",
            "warn" if has_failures else "success",
            artifact=Artifact(type="markdown", label="Final Result", content=consolidated),
        )
        self.recorder.update_run(
            status="completed" if completed else "failed",
            steps=steps,
            consolidated_output=consolidated,
            end_time=timestamp(),
            total_tokens=sum(s.tokens_used or 0 for s in steps),
            cost=sum(s.cost or 0 for s in steps),
        )
        return run


async def execute_run(ctx: ExecutionContext, config: ExecutionConfig | None = None) -> Run:
    """Run ctx.run to a terminal state and return it.

    Raises only on fatal conditions (orchestrator not found, no specialists, no usable
    plan); the run is marked failed before the error propagates. Step errors end up
    in the run's steps and logs.
    """
    config = config or ExecutionConfig()
    run = ctx.run
    recorder = RunRecorder(run, ctx.on_log, ctx.on_step_update, ctx.on_run_update)

    orchestrator = next((a for a in ctx.agents if a.id == run.orchestrator_id), None)
    if orchestrator is None:
        recorder.update_run(status="failed", end_time=timestamp())
        raise OrchestratorNotFoundError(f"Orchestrator {run.orchestrator_id} not found")

    specialists = available_specialists(orchestrator, ctx.agents)
    log.info(
        "RUN %s orchestrator=%s specialists=%s",
        run.id,
        orchestrator.name,
        [(a.id, a.name) for a in specialists],
    )
    recorder.update_run(status="running")
    recorder.log(orchestrator.name, "Starting execution", "PLANNING", agent_avatar=orchestrator.avatar)

    if not specialists:
        recorder.log(
            orchestrator.name,
            "No specialists configured for this orchestrator. Add specialists to its allowed agents.",
            "PLANNING",
            "error",
        )
        recorder.update_run(status="failed", end_time=timestamp())
        raise NoSpecialistsError("No specialists available. Configure specialists on the orchestrator.")

    executor = RunExecutor(ctx, config, recorder, orchestrator, specialists)
    try:
        return await executor.execute()
    except Exception as e:
        log.exception("run %s failed", run.id)
        recorder.log(orchestrator.name, f"Fatal error: {e}", "PROCESS", "error")
        recorder.update_run(status="failed", end_time=timestamp())
        raise
