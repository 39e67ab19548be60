"""
Status use case — the last run and its log, read from the state dir.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hostprov.core.models.result import ExecutionResult
from hostprov.core.models.state import ProvisionState
from hostprov.core.persistence.run_log import (
    RunSummary,
    list_runs,
    read_run_log,
    run_log_path,
    summarize_results,
)
from hostprov.core.persistence.state_file import default_state_path, load_state


@dataclass
class StatusResult:
    """Last run plus the run history on disk."""

    state: ProvisionState | None = None
    runs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result: dict = {"runs": self.runs}
        if self.state:
            result["last_run"] = self.state.last_run.model_dump(mode="json")
            result["step_status"] = dict(self.state.step_status)
        return result


@dataclass
class LogResult:
    """One run log, read back."""

    run_id: str = ""
    path: Path | None = None
    results: list[ExecutionResult] = field(default_factory=list)
    summary: RunSummary | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "run_id": self.run_id,
            "path": str(self.path),
            "records": [r.to_record() for r in self.results],
        }


def get_status(state_dir: Path) -> StatusResult:
    state_path = default_state_path(state_dir)
    return StatusResult(
        state=load_state(state_path) if state_path.is_file() else None,
        runs=[p.stem for p in list_runs(state_dir)],
    )


def read_log(state_dir: Path, run_id: str | None = None) -> LogResult:
    """Read a run log. Defaults to the most recent run."""
    if run_id:
        path = run_log_path(state_dir, run_id)
    else:
        runs = list_runs(state_dir)
        if not runs:
            return LogResult(error=f"No runs recorded in {state_dir}")
        path = runs[-1]

    if not path.is_file():
        return LogResult(run_id=run_id or "", error=f"No run log at {path}")

    results = read_run_log(path)
    # an interrupted run is recognisable from its records alone
    interrupted = any(r.error_kind == "interrupted" for r in results)
    return LogResult(
        run_id=path.stem,
        path=path,
        results=results,
        summary=summarize_results(results, path.stem, path, interrupted),
    )
