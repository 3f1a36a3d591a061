"""Keep runs in process memory for the API. Nothing is persisted across restarts."""
from __future__ import annotations

from src.core.contracts.run import Run


class RunStore:
    def __init__(self, max_runs: int = 200) -> None:
        self._runs: dict[str, Run] = {}
        self._max_runs = max_runs

    def add(self, run: Run) -> None:
        self._runs[run.id] = run
        while len(self._runs) > self._max_runs:
            oldest = next(iter(self._runs))
            del self._runs[oldest]

    def get(self, run_id: str) -> Run | None:
        """Snapshot of the run; the live object keeps changing while it executes."""
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    def last(self, orchestrator_id: str | None = None) -> Run | None:
        for run in reversed(list(self._runs.values())):
            if orchestrator_id is None or run.orchestrator_id == orchestrator_id:
                return run.model_copy(deep=True)
        return None

    def list(self, orchestrator_id: str | None = None) -> list[Run]:
        return [
            r.model_copy(deep=True)
            for r in reversed(list(self._runs.values()))
            if orchestrator_id is None or r.orchestrator_id == orchestrator_id
        ]

    def __len__(self) -> int:
        return len(self._runs)
