"""
ExecutionResult — the recorded outcome of one step.

Results are frozen once created. The executor builds them, the run log
persists them, nothing else touches them. Serialised with camelCase keys
(``stepId``, ``durationMs`` ...) because that is the run log's wire format.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepStatus(StrEnum):
    """Terminal status of a step in the run log."""

    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    WARNED = "warned"
    SKIPPED_DUE_TO_ABORT = "skipped-due-to-abort"


class ErrorKind(StrEnum):
    """Why a step failed."""

    EXECUTION = "execution"
    TIMEOUT = "timeout"
    PRECONDITION = "precondition"
    POSTCONDITION = "postcondition"
    INTERRUPTED = "interrupted"


class ExecutionResult(BaseModel):
    """Outcome of one step, as recorded in the run log."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    step_id: str
    status: StepStatus
    start_time: str = Field(default_factory=_now_iso)
    duration_ms: int = 0
    truncated_output: str = ""
    output_truncated: bool = False
    attempts: int = 0
    error_kind: ErrorKind | None = None
    error: str | None = None
    detail: str = ""   # already-satisfied, dry-run, dependency id ...

    @property
    def ok(self) -> bool:
        """Whether the step left the host in its goal state."""
        return self.status in (StepStatus.SKIPPED, StepStatus.SUCCEEDED)

    @classmethod
    def skipped(cls, step_id: str, detail: str = "already-satisfied", **kwargs: Any) -> ExecutionResult:
        return cls(step_id=step_id, status=StepStatus.SKIPPED, detail=detail, **kwargs)

    @classmethod
    def aborted(cls, step_id: str, detail: str = "") -> ExecutionResult:
        """A plan step that never ran because the run stopped."""
        return cls(step_id=step_id, status=StepStatus.SKIPPED_DUE_TO_ABORT, detail=detail)

    def with_status(self, status: StepStatus) -> ExecutionResult:
        """Copy with a different status (results themselves never change)."""
        return self.model_copy(update={"status": status})

    def to_record(self) -> dict[str, Any]:
        """Run-log line payload."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
