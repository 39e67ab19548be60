"""
Action and Receipt models — the execution contract.

Actions describe the host mutation a step performs. Receipts describe
what happened when an adapter ran it. The executor sends Actions,
adapters return Receipts. Never exceptions.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field, model_validator


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


ActionKind = Literal["command", "package", "service", "database", "file", "python"]


class Action(BaseModel):
    """A host mutation to be executed by an adapter.

    In a playbook an action is either a bare command string or a mapping
    whose ``kind`` selects the adapter and whose other keys become
    ``params``::

        action: "apt-get update"

        action:
          kind: package
          names: [nginx, redis-server]

    String params may contain ``{name}`` placeholders that the executor
    fills from run variables and the step's declared secrets.
    """

    kind: ActionKind = "command"
    params: dict[str, Any] = Field(default_factory=dict)
    func: Callable[..., Any] | None = Field(default=None, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"kind": "command", "params": {"command": data}}
        if isinstance(data, dict) and "params" not in data:
            data = dict(data)
            head = {k: data.pop(k) for k in ("kind", "func") if k in data}
            head.setdefault("kind", "python" if "func" in head else "command")
            return {**head, "params": data}
        return data

    @model_validator(mode="after")
    def _check_python(self) -> Action:
        if self.kind == "python" and self.func is None:
            raise ValueError("python actions need a 'func' callable")
        return self

    def describe(self) -> str:
        """Short human label, never rendered (placeholders stay as written)."""
        if self.kind == "command":
            cmd = self.params.get("command", "")
            return cmd if isinstance(cmd, str) else " ".join(map(str, cmd))
        if self.kind == "python" and self.func is not None:
            return f"python:{getattr(self.func, '__name__', 'callable')}"
        return self.kind


class Receipt(BaseModel):
    """Result of one adapter invocation.

    Receipts capture the full outcome of an action. The adapter
    NEVER raises exceptions: failures and timeouts are captured here.
    """

    adapter: str
    step_id: str
    status: Literal["ok", "failed", "timeout"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    truncated: bool = False
    error: str | None = None
    return_code: int | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed or timed out."""
        return self.status != "ok"

    @classmethod
    def success(
        cls,
        adapter: str,
        step_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(adapter=adapter, step_id=step_id, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        adapter: str,
        step_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(adapter=adapter, step_id=step_id, status="failed", error=error, **kwargs)

    @classmethod
    def timed_out(
        cls,
        adapter: str,
        step_id: str,
        timeout: float,
        **kwargs: Any,
    ) -> Receipt:
        """Create a timeout receipt. The action is already terminated."""
        return cls(
            adapter=adapter,
            step_id=step_id,
            status="timeout",
            error=f"Action timed out after {timeout:g}s",
            **kwargs,
        )
