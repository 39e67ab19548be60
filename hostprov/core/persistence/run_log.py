"""
Run log — append-only record of every step outcome in one run.

One NDJSON (newline-delimited JSON) file per run under
``<state_dir>/runs/<run_id>.ndjson``. Each line is one ExecutionResult::

    {"stepId": "packages", "status": "succeeded", "startTime": "...",
     "durationMs": 5123, "truncatedOutput": "...", "attempts": 1}

Every record is flushed and fsynced before ``record()`` returns, so a
crash mid-run leaves a usable partial log. The log is the only writer
of its file: an exclusive ``flock`` is held while it is open.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import threading
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from pydantic import ValidationError as PydanticValidationError

from hostprov.core.models.result import ExecutionResult, StepStatus

logger = logging.getLogger(__name__)

RUNS_DIR = "runs"
LOG_SUFFIX = ".ndjson"

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_INVALID = 2
EXIT_INTERRUPTED = 3


def generate_run_id() -> str:
    """Unique, sortable run identifier."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


def run_log_path(state_dir: Path, run_id: str) -> Path:
    return state_dir / RUNS_DIR / f"{run_id}{LOG_SUFFIX}"


@dataclass
class RunSummary:
    """Counts and verdict for one run."""

    run_id: str = ""
    log_path: Path | None = None
    counts: dict[str, int] = field(default_factory=dict)
    total_duration_ms: int = 0
    interrupted: bool = False
    results: list[ExecutionResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def count(self, status: StepStatus) -> int:
        return self.counts.get(str(status), 0)

    @property
    def aborted(self) -> bool:
        return self.count(StepStatus.FAILED) > 0

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return EXIT_INTERRUPTED
        if self.aborted:
            return EXIT_ABORTED
        return EXIT_OK

    @property
    def status(self) -> str:
        if self.interrupted:
            return "interrupted"
        if self.aborted:
            return "aborted"
        if self.count(StepStatus.WARNED):
            return "warned"
        return "ok"

    def ids_with(self, *statuses: StepStatus) -> list[str]:
        return [r.step_id for r in self.results if r.status in statuses]

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "exit_code": self.exit_code,
            "counts": dict(self.counts),
            "total": self.total,
            "total_duration_ms": self.total_duration_ms,
            "log_path": str(self.log_path) if self.log_path else None,
            "results": [r.to_record() for r in self.results],
        }


def summarize_results(
    results: list[ExecutionResult],
    run_id: str = "",
    log_path: Path | None = None,
    interrupted: bool = False,
) -> RunSummary:
    counts = Counter(str(r.status) for r in results)
    return RunSummary(
        run_id=run_id,
        log_path=log_path,
        counts={str(s): counts.get(str(s), 0) for s in StepStatus},
        total_duration_ms=sum(r.duration_ms for r in results),
        interrupted=interrupted,
        results=list(results),
    )


class RunLog:
    """Append-only, single-writer run log.

    Use as a context manager::

        with RunLog(path, run_id) as log:
            log.record(result)
        summary = log.summarize()
    """

    def __init__(self, path: Path, run_id: str = ""):
        self._path = path
        self._run_id = run_id or path.stem
        self._results: list[ExecutionResult] = []
        self._lock = threading.Lock()
        self._file: IO[str] | None = None
        self.interrupted = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def results(self) -> list[ExecutionResult]:
        return list(self._results)

    def open(self) -> RunLog:
        """Create the file and take the exclusive writer lock."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        f = self._path.open("a", encoding="utf-8")
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            f.close()
            raise RuntimeError(f"Run log {self._path} already has a writer") from None
        self._file = f
        logger.debug("Run log opened: %s", self._path)
        return self

    def close(self) -> None:
        if self._file is None:
            return
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None

    def __enter__(self) -> RunLog:
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    def record(self, result: ExecutionResult) -> None:
        """Append one result and make it durable before returning."""
        if self._file is None:
            raise RuntimeError("Run log is not open")
        line = json.dumps(result.to_record(), ensure_ascii=False) + "\n"
        with self._lock:
            self._file.write(line)
            self._file.flush()
            os.fsync(self._file.fileno())
            self._results.append(result)
        logger.debug("Recorded %s → %s", result.step_id, result.status)

    def summarize(self) -> RunSummary:
        """Counts per status, total duration and exit code."""
        with self._lock:
            results = list(self._results)
        return summarize_results(results, self._run_id, self._path, self.interrupted)


def read_run_log(path: Path) -> list[ExecutionResult]:
    """Read every result from a run log, oldest first.

    A truncated or corrupt line (crash mid-write) is skipped with a
    warning; everything before it is still returned.
    """
    if not path.is_file():
        return []

    results: list[ExecutionResult] = []
    try:
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    results.append(ExecutionResult.model_validate(json.loads(line)))
                except (json.JSONDecodeError, PydanticValidationError) as e:
                    logger.warning("Skipping corrupt run log entry at line %d: %s", line_num, e)
    except OSError as e:
        logger.error("Failed to read run log %s: %s", path, e)
    return results


def list_runs(state_dir: Path) -> list[Path]:
    """Run log files, oldest first."""
    runs_dir = state_dir / RUNS_DIR
    if not runs_dir.is_dir():
        return []
    return sorted(runs_dir.glob(f"*{LOG_SUFFIX}"))
