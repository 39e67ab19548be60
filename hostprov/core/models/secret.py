"""
Secret models — values collected once and held only in memory.

A ``SecretSpec`` describes what to ask for. A ``SecretValue`` is what
was collected. Raw content lives inside a ``pydantic.SecretStr`` so it
never shows up in reprs, dumps, or tracebacks by accident.
"""

from __future__ import annotations

from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, SecretStr

# Environment variable prefix for secrets exported to child processes
# and read back in non-interactive runs
SECRET_ENV_PREFIX = "HOSTPROV_SECRET_"

# Shown wherever a sensitive value would otherwise appear
MASK = "********"


def secret_env_name(name: str) -> str:
    """``db_root_password`` → ``HOSTPROV_SECRET_DB_ROOT_PASSWORD``."""
    return SECRET_ENV_PREFIX + name.upper().replace("-", "_")


class SecretSpec(BaseModel):
    """A value the playbook needs from the operator.

    ``validator`` is an optional callable returning an error message
    (or None when the value is acceptable). YAML playbooks use
    ``min_length`` / ``pattern`` instead.
    """

    name: str
    prompt: str = ""
    masked: bool = True
    sensitive: bool | None = None   # defaults to ``masked``
    min_length: int = 1
    pattern: str | None = None
    default: str | None = None
    validator: Callable[[str], str | None] | None = Field(default=None, exclude=True)

    @property
    def is_sensitive(self) -> bool:
        return self.masked if self.sensitive is None else self.sensitive

    @property
    def label(self) -> str:
        return self.prompt or self.name.replace("_", " ").capitalize()


class SecretValue(BaseModel):
    """A collected value. Read-only after collection."""

    model_config = ConfigDict(frozen=True)

    name: str
    sensitive: bool = True
    value: SecretStr

    def reveal(self) -> str:
        """Raw content. Only the executor calls this."""
        return self.value.get_secret_value()

    def __repr__(self) -> str:
        shown = MASK if self.sensitive else self.reveal()
        return f"SecretValue(name={self.name!r}, value={shown!r})"

    __str__ = __repr__


class SecretStore:
    """The process-wide set of collected values, keyed by name."""

    def __init__(self, values: dict[str, SecretValue] | None = None):
        self._values: dict[str, SecretValue] = dict(values or {})

    def add(self, value: SecretValue) -> None:
        if value.name in self._values:
            raise ValueError(f"Secret '{value.name}' already collected")
        self._values[value.name] = value

    def get(self, name: str) -> SecretValue | None:
        return self._values.get(name)

    def names(self) -> list[str]:
        return list(self._values)

    def select(self, names: list[str]) -> dict[str, SecretValue]:
        """The subset a step declared a need for."""
        return {n: self._values[n] for n in names if n in self._values}

    def sensitive_values(self) -> list[SecretValue]:
        return [v for v in self._values.values() if v.sensitive]

    def __contains__(self, name: Any) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)
