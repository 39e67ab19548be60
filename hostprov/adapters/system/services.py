"""
Service manager adapter — systemctl start / restart / stop / enable.

Also exposes :func:`service_status`, used by ``service_active`` probes.
"""

from __future__ import annotations

import logging
import shutil

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.command import receipt_from_result
from hostprov.adapters.shell.runner import run_command
from hostprov.core.models.action import Receipt

logger = logging.getLogger(__name__)

_OPERATIONS = {"start", "restart", "stop", "reload", "enable", "disable"}


def service_status(service: str, timeout: float = 10) -> dict:
    """Get the active state of a systemd unit.

    Returns::

        {"service": "nginx", "active": True, "state": "active"}

    ``active`` is None when systemctl is unavailable or does not answer.
    """
    if shutil.which("systemctl") is None:
        return {"service": service, "active": None, "state": "unknown",
                "error": "systemctl not found"}

    result = run_command(["systemctl", "is-active", service], timeout=timeout)
    if result.timed_out or result.error:
        return {"service": service, "active": None, "state": "unknown",
                "error": result.error or "systemctl timed out"}
    state = result.output.strip() or "unknown"
    return {"service": service, "active": state == "active", "state": state}


class ServiceAdapter(Adapter):
    """Drive systemd units.

    Action params:
        names (list[str]): Units to act on.
        operation (str): start | restart | stop | reload | enable | disable.
        now (bool): With enable/disable, also start/stop the unit.
    """

    @property
    def name(self) -> str:
        return "service"

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        names = context.params.get("names")
        if not names or not isinstance(names, list):
            return False, "Missing required param: 'names' (list)"
        operation = context.params.get("operation", "start")
        if operation not in _OPERATIONS:
            return False, f"Unknown operation '{operation}'. Valid: {', '.join(sorted(_OPERATIONS))}"
        if not self.is_available():
            return False, "systemctl not found"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.params.get("operation", "start")
        names = [str(n) for n in context.params["names"]]
        argv = ["systemctl", operation]
        if operation in ("enable", "disable") and context.params.get("now"):
            argv.append("--now")
        argv.extend(names)

        logger.debug("systemctl %s %s", operation, " ".join(names))
        result = run_command(argv, env_overrides=context.env, timeout=context.timeout,
                             max_output_bytes=context.max_output_bytes, redact=context.redact)
        return receipt_from_result(self.name, context.step_id, result,
                                   operation=operation, services=names)
