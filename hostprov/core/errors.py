"""
Error taxonomy — every failure the engine can name.

Planning-time errors (``PlanError``, ``CycleError``, ``PrivilegeError``,
``ConfigError``) stop the run before any host mutation. Run-time errors
(``ExecutionError``, ``StepTimeout``, ``ProbeError``) are turned into
ExecutionResults and routed through the recovery controller.
"""

from __future__ import annotations


class HostprovError(Exception):
    """Base class for all hostprov errors."""


class ConfigError(HostprovError):
    """Raised when a playbook or run configuration is invalid or missing."""


class ValidationError(HostprovError):
    """A collected value failed its validator.

    Fatal to the current prompt: the collector re-prompts while attempts
    remain, then lets this propagate and the run stops.
    """

    def __init__(self, name: str, message: str):
        super().__init__(f"{name}: {message}")
        self.name = name
        self.message = message


class ProbeError(HostprovError):
    """An idempotency probe could not run (tool missing, timeout, I/O)."""


class ExecutionError(HostprovError):
    """A step's action failed."""

    kind = "execution"


class StepTimeout(ExecutionError):
    """A step's action exceeded its time bound and was terminated."""

    kind = "timeout"

    def __init__(self, timeout: float):
        super().__init__(f"Action timed out after {timeout:g}s")
        self.timeout = timeout


class PlanError(HostprovError):
    """The step set cannot be planned (duplicates, unknown dependencies)."""


class CycleError(PlanError):
    """The dependency graph has a cycle.

    ``members`` is the cycle path, first id repeated at the end:
    ``["a", "b", "a"]``.
    """

    def __init__(self, members: list[str]):
        super().__init__(f"Dependency cycle: {' -> '.join(members)}")
        self.members = members


class PrivilegeError(HostprovError, PermissionError):
    """The process lacks the privilege the playbook requires."""


class RunInterrupted(KeyboardInterrupt):
    """The run was stopped by a signal (SIGTERM / SIGINT).

    Derives from KeyboardInterrupt so ``except Exception`` blocks in
    adapters and callables let it through.
    """

    def __init__(self, signum: int | None = None):
        super().__init__(f"Interrupted by signal {signum}" if signum else "Interrupted")
        self.signum = signum


class ConfirmationDeclined(HostprovError):
    """The operator declined the pre-run confirmation."""
