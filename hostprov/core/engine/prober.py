"""
Idempotency prober — does a step's goal state already hold?

Each probe kind is a small read-only check returning a three-valued
:class:`ProbeOutcome`. ``UNKNOWN`` means the check itself could not run
(tool missing, timeout, unreadable file). The gate treats it as
``NOT_SATISFIED`` unless the step sets ``skip_on_unknown``: re-running
a safe action beats silently skipping required work.

Probes never receive secrets.
"""

from __future__ import annotations

import logging
import pwd
import re
import shutil
import socket
from enum import StrEnum
from pathlib import Path
from typing import Callable

from hostprov.adapters.shell.runner import run_command
from hostprov.adapters.system.packages import MANAGERS, package_installed
from hostprov.adapters.system.services import service_status
from hostprov.core.engine.templating import render
from hostprov.core.errors import ProbeError
from hostprov.core.models.step import ProbeSpec, Step

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 30.0


class ProbeOutcome(StrEnum):
    SATISFIED = "satisfied"
    NOT_SATISFIED = "not-satisfied"
    UNKNOWN = "unknown"


def _from_bool(value: bool) -> ProbeOutcome:
    return ProbeOutcome.SATISFIED if value else ProbeOutcome.NOT_SATISFIED


# ── Probe kinds ──────────────────────────────────────────────────
# Each raises ProbeError when it cannot reach a verdict.


def _probe_command(spec: ProbeSpec, variables: dict[str, str]) -> ProbeOutcome:
    command = spec.params.get("command")
    if not command:
        raise ProbeError("command probe without 'command'")
    if isinstance(command, str):
        command = render(command, variables)
    result = run_command(
        command,
        timeout=float(spec.params.get("timeout", DEFAULT_PROBE_TIMEOUT)),
        cwd=spec.params.get("cwd"),
        max_output_bytes=4096,
    )
    if result.timed_out:
        raise ProbeError(f"probe command timed out: {spec.describe()}")
    if result.not_runnable:
        raise ProbeError(result.error or f"probe command not runnable (exit {result.returncode})")
    return _from_bool(result.returncode == 0)


def _probe_service_active(spec: ProbeSpec, variables: dict[str, str]) -> ProbeOutcome:
    name = render(str(spec.params.get("name", "")), variables)
    status = service_status(name, timeout=float(spec.params.get("timeout", 10)))
    if status["active"] is None:
        raise ProbeError(status.get("error", f"cannot query service {name}"))
    return _from_bool(status["active"])


def _probe_package_installed(spec: ProbeSpec, variables: dict[str, str]) -> ProbeOutcome:
    name = render(str(spec.params.get("name", "")), variables)
    manager = spec.params.get("manager", "apt")
    if manager not in MANAGERS:
        raise ProbeError(f"unknown package manager '{manager}'")
    result = package_installed(name, manager)
    if result.timed_out or result.not_runnable:
        raise ProbeError(result.error or f"cannot query {manager} for {name}")
    return _from_bool(result.ok)


def _probe_file_exists(spec: ProbeSpec, variables: dict[str, str]) -> ProbeOutcome:
    path = Path(render(str(spec.params.get("path", "")), variables))
    try:
        return _from_bool(path.exists())
    except OSError as e:
        raise ProbeError(f"cannot stat {path}: {e}") from e


def _probe_file_contains(spec: ProbeSpec, variables: dict[str, str]) -> ProbeOutcome:
    path = Path(render(str(spec.params.get("path", "")), variables))
    pattern = spec.params.get("pattern")
    if not pattern:
        raise ProbeError("file_contains probe without 'pattern'")
    if not path.exists():
        return ProbeOutcome.NOT_SATISFIED
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ProbeError(f"cannot read {path}: {e}") from e
    return _from_bool(re.search(render(pattern, variables), text, re.MULTILINE) is not None)


def _probe_user_exists(spec: ProbeSpec, variables: dict[str, str]) -> ProbeOutcome:
    name = render(str(spec.params.get("name", "")), variables)
    try:
        pwd.getpwnam(name)
    except KeyError:
        return ProbeOutcome.NOT_SATISFIED
    return ProbeOutcome.SATISFIED


def _probe_port_free(spec: ProbeSpec, variables: dict[str, str]) -> ProbeOutcome:
    """Satisfied when nothing accepts connections on host:port."""
    host = spec.params.get("host", "127.0.0.1")
    port = int(spec.params.get("port", 0))
    try:
        with socket.create_connection((host, port), timeout=float(spec.params.get("timeout", 2))):
            return ProbeOutcome.NOT_SATISFIED
    except ConnectionRefusedError:
        return ProbeOutcome.SATISFIED
    except (socket.timeout, OSError) as e:
        raise ProbeError(f"cannot check port {host}:{port}: {e}") from e


def _probe_disk_free(spec: ProbeSpec, variables: dict[str, str]) -> ProbeOutcome:
    path = spec.params.get("path", "/")
    minimum = int(spec.params.get("min_bytes", 0))
    try:
        free = shutil.disk_usage(path).free
    except OSError as e:
        raise ProbeError(f"cannot read disk usage of {path}: {e}") from e
    return _from_bool(free >= minimum)


def _probe_python(spec: ProbeSpec, variables: dict[str, str]) -> ProbeOutcome:
    assert spec.func is not None
    try:
        value = spec.func(variables)
    except Exception as e:
        raise ProbeError(f"{type(e).__name__}: {e}") from e
    if value is None:
        raise ProbeError(f"{spec.describe()} returned no verdict")
    return _from_bool(bool(value))


_PROBES: dict[str, Callable[[ProbeSpec, dict[str, str]], ProbeOutcome]] = {
    "command": _probe_command,
    "service_active": _probe_service_active,
    "package_installed": _probe_package_installed,
    "file_exists": _probe_file_exists,
    "file_contains": _probe_file_contains,
    "user_exists": _probe_user_exists,
    "port_free": _probe_port_free,
    "disk_free": _probe_disk_free,
    "python": _probe_python,
}


class Prober:
    """Evaluates probe specs against the live host."""

    def __init__(self, variables: dict[str, str] | None = None):
        self._variables = dict(variables or {})

    def check(self, spec: ProbeSpec) -> ProbeOutcome:
        """Run one probe. Never raises."""
        handler = _PROBES.get(spec.kind)
        if handler is None:
            logger.warning("Unknown probe kind '%s'", spec.kind)
            return ProbeOutcome.UNKNOWN
        try:
            outcome = handler(spec, self._variables)
        except ProbeError as e:
            logger.info("Probe %s inconclusive: %s", spec.describe(), e)
            return ProbeOutcome.UNKNOWN
        if spec.negate and outcome is not ProbeOutcome.UNKNOWN:
            outcome = (
                ProbeOutcome.NOT_SATISFIED
                if outcome is ProbeOutcome.SATISFIED
                else ProbeOutcome.SATISFIED
            )
        logger.debug("Probe %s → %s", spec.describe(), outcome)
        return outcome

    def check_all(self, specs: list[ProbeSpec]) -> ProbeOutcome:
        """Combine probes: any NOT_SATISFIED wins, then any UNKNOWN."""
        outcomes = [self.check(spec) for spec in specs]
        if ProbeOutcome.NOT_SATISFIED in outcomes:
            return ProbeOutcome.NOT_SATISFIED
        if ProbeOutcome.UNKNOWN in outcomes:
            return ProbeOutcome.UNKNOWN
        return ProbeOutcome.SATISFIED

    def probe(self, step: Step) -> ProbeOutcome:
        """Does the step's postcondition already hold?

        A step without postconditions is never satisfied: it always runs.
        """
        if not step.postconditions:
            return ProbeOutcome.NOT_SATISFIED
        return self.check_all(step.postconditions)

    def should_skip(self, step: Step, outcome: ProbeOutcome) -> bool:
        """Gate decision for a probe outcome."""
        if outcome is ProbeOutcome.SATISFIED:
            return True
        return outcome is ProbeOutcome.UNKNOWN and step.skip_on_unknown

    def unmet_preconditions(self, step: Step) -> list[str]:
        """Descriptions of preconditions that do not (provably) hold."""
        unmet: list[str] = []
        for spec in step.preconditions:
            outcome = self.check(spec)
            if outcome is not ProbeOutcome.SATISFIED:
                unmet.append(f"{spec.describe()} is {outcome}")
        return unmet
