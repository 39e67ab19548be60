"""
Step model — one declarative unit of provisioning work.

A step says what must already hold before it runs (preconditions),
what it does (action), what holds once it is done (postconditions),
and what the run should do when it fails (failure policy).
"""

from __future__ import annotations

import re
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hostprov.core.models.action import Action

ProbeKind = Literal[
    "command",
    "service_active",
    "package_installed",
    "file_exists",
    "file_contains",
    "user_exists",
    "port_free",
    "disk_free",
    "python",
]

_RETRY_RE = re.compile(r"^retry\s*\(\s*(\d+)\s*\)$")
_STEP_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")


class ProbeSpec(BaseModel):
    """A read-only check of host state.

    Same shapes as :class:`Action`: a bare string is a ``command`` probe
    (exit 0 means satisfied), a mapping selects ``kind`` and the other
    keys become ``params``.
    """

    kind: ProbeKind = "command"
    params: dict[str, Any] = Field(default_factory=dict)
    negate: bool = False
    func: Callable[..., Any] | None = Field(default=None, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"kind": "command", "params": {"command": data}}
        if isinstance(data, dict) and "params" not in data:
            data = dict(data)
            head = {k: data.pop(k) for k in ("kind", "func", "negate") if k in data}
            head.setdefault("kind", "python" if "func" in head else "command")
            return {**head, "params": data}
        return data

    @model_validator(mode="after")
    def _check_python(self) -> ProbeSpec:
        if self.kind == "python" and self.func is None:
            raise ValueError("python probes need a 'func' callable")
        return self

    def describe(self) -> str:
        target = (
            self.params.get("name")
            or self.params.get("path")
            or self.params.get("command")
            or self.params.get("port")
            or getattr(self.func, "__name__", "")
        )
        prefix = "not " if self.negate else ""
        return f"{prefix}{self.kind}({target})"


class FailurePolicy(BaseModel):
    """What the run does when a step fails.

    Written in a playbook as ``abort``, ``warn-and-continue`` or
    ``retry(n)``.
    """

    kind: Literal["abort", "warn-and-continue", "retry"] = "abort"
    retries: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _parse(cls, data: Any) -> Any:
        if not isinstance(data, str):
            return data
        text = data.strip().lower()
        if text in ("abort", "warn-and-continue"):
            return {"kind": text}
        if text in ("warn", "continue"):
            return {"kind": "warn-and-continue"}
        match = _RETRY_RE.match(text)
        if match:
            return {"kind": "retry", "retries": int(match.group(1))}
        raise ValueError(
            f"Unknown failure policy '{data}'. Use abort, warn-and-continue or retry(n)."
        )

    def __str__(self) -> str:
        if self.kind == "retry":
            return f"retry({self.retries})"
        return self.kind


class Step(BaseModel):
    """A declarative provisioning step.

    Steps are immutable once declared: the planner orders them, the
    executor runs them, nothing rewrites them.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    depends_on: list[str] = Field(default_factory=list)

    preconditions: list[ProbeSpec] = Field(default_factory=list)
    action: Action
    postconditions: list[ProbeSpec] = Field(default_factory=list)

    failure_policy: FailurePolicy = Field(default_factory=FailurePolicy)
    secrets: list[str] = Field(default_factory=list)
    rollback: str = ""                # hint only, shown in the summary
    timeout: float | None = Field(default=None, gt=0)
    skip_on_unknown: bool = False     # Unknown probe outcome counts as satisfied
    verify: bool = True               # re-probe postconditions after the action
    privileged: bool = True

    @field_validator("id")
    @classmethod
    def _check_id(cls, v: str) -> str:
        if not _STEP_ID_RE.match(v):
            raise ValueError(f"Invalid step id '{v}'")
        return v

    @field_validator("depends_on", "secrets", "preconditions", "postconditions", mode="before")
    @classmethod
    def _as_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (str, dict)):
            return [v]
        return v
