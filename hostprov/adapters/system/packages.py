"""
Package manager adapter — install packages through apt, pip or npm.

Also exposes :func:`package_installed`, the read-only probe the
idempotency gate uses for ``package_installed`` postconditions.
"""

from __future__ import annotations

import logging
import shutil

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.command import receipt_from_result
from hostprov.adapters.shell.runner import CommandResult, run_command
from hostprov.core.models.action import Receipt

logger = logging.getLogger(__name__)

# manager → (binary, install argv prefix)
MANAGERS: dict[str, tuple[str, list[str]]] = {
    "apt": ("apt-get", ["apt-get", "install", "-y", "--no-install-recommends"]),
    "pip": ("pip3", ["pip3", "install", "--no-cache-dir"]),
    "npm": ("npm", ["npm", "install", "-g"]),
}

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def _query_argv(manager: str, name: str) -> list[str]:
    if manager == "apt":
        return ["dpkg-query", "-W", "-f=${Status}", name]
    if manager == "pip":
        return ["pip3", "show", name]
    return ["npm", "ls", "-g", "--depth=0", name]


def package_installed(name: str, manager: str = "apt", timeout: float = 30) -> CommandResult:
    """Ask the package manager whether ``name`` is installed.

    Returns the raw runner result; ``ok`` means installed. For apt the
    status string is also checked because dpkg-query exits 0 for
    packages that were removed but not purged.
    """
    result = run_command(_query_argv(manager, name), timeout=timeout)
    if manager == "apt" and result.ok and "install ok installed" not in result.output:
        result.returncode = 1
    return result


class PackageAdapter(Adapter):
    """Install packages.

    Action params:
        names (list[str]): Packages to install.
        manager (str): 'apt' (default), 'pip' or 'npm'.
        update (bool): Refresh the apt index first.
        upgrade (bool): Run a full apt upgrade first.
    """

    @property
    def name(self) -> str:
        return "package"

    def is_available(self) -> bool:
        return shutil.which("apt-get") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        names = context.params.get("names")
        if not names or not isinstance(names, list):
            return False, "Missing required param: 'names' (list)"
        manager = context.params.get("manager", "apt")
        if manager not in MANAGERS:
            return False, f"Unknown package manager '{manager}'. Valid: {', '.join(MANAGERS)}"
        if shutil.which(MANAGERS[manager][0]) is None:
            return False, f"Package manager not found: {MANAGERS[manager][0]}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        manager = params.get("manager", "apt")
        names = [str(n) for n in params["names"]]
        env = dict(context.env)
        if manager == "apt":
            env.update(_APT_ENV)

        outputs: list[str] = []
        prelude: list[list[str]] = []
        if manager == "apt" and params.get("update"):
            prelude.append(["apt-get", "update"])
        if manager == "apt" and params.get("upgrade"):
            prelude.append(["apt-get", "upgrade", "-y"])

        for argv in prelude:
            result = run_command(argv, env_overrides=env, timeout=context.timeout,
                                 max_output_bytes=context.max_output_bytes, redact=context.redact)
            if not result.ok:
                return receipt_from_result(self.name, context.step_id, result, command=argv[:2])
            outputs.append(result.output)

        argv = MANAGERS[manager][1] + names
        logger.debug("Installing via %s: %s", manager, ", ".join(names))
        result = run_command(argv, env_overrides=env, timeout=context.timeout,
                             max_output_bytes=context.max_output_bytes, redact=context.redact)
        if outputs:
            result.output = "".join(outputs) + result.output
        return receipt_from_result(self.name, context.step_id, result, manager=manager, packages=names)
