"""
ProvisionState — what the last run did on this host.

Serialized to ``<state_dir>/current.json`` after every run so
``hostprov status`` can answer "what happened last time, and where
is the log" without parsing run logs.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class RunRecord(BaseModel):
    """Summary of one run."""

    run_id: str = ""
    playbook: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""            # ok, warned, aborted, interrupted
    exit_code: int = 0
    dry_run: bool = False
    counts: dict[str, int] = Field(default_factory=dict)
    duration_ms: int = 0
    log_path: str = ""


class ProvisionState(BaseModel):
    """Root state model — serialized to ``<state_dir>/current.json``.

    Disposable: delete it and the next run recreates it. The run logs
    are the durable record.
    """

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Runs ─────────────────────────────────────────────────────
    last_run: RunRecord = Field(default_factory=RunRecord)
    step_status: dict[str, str] = Field(default_factory=dict)   # step id → last status

    # ── Extensible metadata ──────────────────────────────────────
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()
