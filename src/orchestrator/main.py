"""Orchestrator FastAPI app: POST /runs -> plan, execute, consolidate; GET /runs/... for traces."""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from src.core.config.env import load_default_env

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
# Load .env so OPENROUTER_API_KEY etc. are set before the config is read
load_default_env(_PROJECT_ROOT)

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(message)s", datefmt="%H:%M:%S")
log = logging.getLogger("orchestrator")
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from src.core.config.loader import load_workspace_config
from src.core.config.models import WorkspaceConfig
from src.core.contracts.api import RunAccepted, RunRequest
from src.core.contracts.run import Run, RunLog
from src.knowledge.base import KnowledgeSource
from src.knowledge.chroma import create_chroma_knowledge
from src.llm.client import CompletionClient, create_openrouter_client
from src.orchestrator.executor import ExecutionContext, execute_run
from src.orchestrator.recorder import create_run
from src.orchestrator.store import RunStore

app = FastAPI(title="Multi-Agent: Orchestrator")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

CONFIG_PATH = os.environ.get("CONFIG_PATH", "config/workspace.json")
PROJECT_ROOT = _PROJECT_ROOT
WORKSPACE_CONFIG: WorkspaceConfig | None = None
CLIENT: CompletionClient | None = None
KNOWLEDGE: KnowledgeSource | None = None
RUNS = RunStore()
_TASKS: set[asyncio.Task] = set()


def get_config() -> WorkspaceConfig:
    global WORKSPACE_CONFIG
    if WORKSPACE_CONFIG is None:
        WORKSPACE_CONFIG = load_workspace_config(CONFIG_PATH, project_root=PROJECT_ROOT)
    return WORKSPACE_CONFIG


def get_client() -> CompletionClient | None:
    global CLIENT
    if CLIENT is None:
        CLIENT = create_openrouter_client(get_config().llm)
    return CLIENT


def get_knowledge() -> KnowledgeSource | None:
    global KNOWLEDGE
    config = get_config()
    if KNOWLEDGE is None and config.knowledge and any(a.rag_enabled for a in config.agents):
        KNOWLEDGE = create_chroma_knowledge(config.knowledge, project_root=PROJECT_ROOT)
    return KNOWLEDGE


def _log_event(entry: RunLog) -> None:
    step = f" [{entry.step_id}]" if entry.step_id else ""
    log.info("%s %s%s: %s", entry.phase, entry.agent_name, step, entry.message)


def _summary(run: Run) -> dict:
    return {
        "run_id": run.id,
        "orchestrator_id": run.orchestrator_id,
        "orchestrator_name": run.orchestrator_name,
        "goal": run.goal,
        "status": run.status,
        "start_time": run.start_time,
        "end_time": run.end_time,
        "steps": len(run.steps),
        "total_tokens": run.total_tokens,
        "cost": run.cost,
    }


@app.on_event("startup")
def startup():
    config = get_config()
    ids = ", ".join(a.id for a in config.orchestrators()) or "none"
    log.info("workspace %s: %s agents, orchestrators: %s", config.workspace_id, len(config.agents), ids)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/agents")
def list_agents():
    config = get_config()
    return [
        {
            "id": a.id,
            "name": a.name,
            "type": a.type,
            "role": a.role,
            "model": a.model,
            "allowed_agents": a.allowed_agents,
        }
        for a in config.agents
    ]


async def _execute(run: Run) -> str | None:
    """Run to completion; returns the error message of a fatal failure, if any."""
    config = get_config()
    ctx = ExecutionContext(
        run=run,
        agents=config.agents,
        client=get_client(),
        knowledge=get_knowledge(),
        on_log=_log_event,
    )
    try:
        await execute_run(ctx, config.execution)
    except Exception as e:
        log.exception("Run %s failed", run.id)
        return str(e)
    log.info(
        "FINAL OUTPUT: %s",
        (run.consolidated_output[:300] + "…")
        if run.consolidated_output and len(run.consolidated_output) > 300
        else (run.consolidated_output or "(empty)"),
    )
    return None


@app.post("/runs", response_model=RunAccepted)
async def start_run(req: RunRequest):
    config = get_config()
    orchestrator = config.get_agent(req.orchestrator_id)
    if orchestrator is None or not orchestrator.is_orchestrator:
        raise HTTPException(status_code=404, detail=f"Orchestrator {req.orchestrator_id} not found")
    if get_client() is None:
        raise HTTPException(status_code=503, detail=f"{config.llm.api_key_env} not set")

    log.info("GOAL: %s", (req.goal[:200] + "…") if len(req.goal) > 200 else req.goal)
    run = create_run(orchestrator.id, orchestrator.name, req.goal, req.context)
    RUNS.add(run)

    if not req.wait:
        task = asyncio.create_task(_execute(run))
        _TASKS.add(task)
        task.add_done_callback(_TASKS.discard)
        return RunAccepted(run_id=run.id, status=run.status)

    error = await _execute(run)
    return RunAccepted(
        run_id=run.id,
        status=run.status,
        consolidated_output=run.consolidated_output,
        error=error,
    )


@app.get("/runs")
def list_runs(orchestrator_id: str | None = None):
    return [_summary(r) for r in RUNS.list(orchestrator_id)]


@app.get("/runs/last")
def get_last_run(orchestrator_id: str | None = None):
    """Full trace of the most recent run (optional orchestrator_id filter)."""
    run = RUNS.last(orchestrator_id)
    if run is None:
        raise HTTPException(status_code=404, detail="No runs found")
    return run.model_dump()


@app.get("/runs/{run_id}")
def get_run(run_id: str):
    """Full trace for a run: steps, logs and consolidated output."""
    run = RUNS.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run.model_dump()


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
