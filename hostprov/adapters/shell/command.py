"""
Shell command adapter — run a command, optionally as another user.

This is the most fundamental adapter: it runs commands and captures
their output. The package, service and database adapters are built on
the same runner.
"""

from __future__ import annotations

import logging
import os
import pwd
import shutil

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.runner import CommandResult, run_command
from hostprov.core.models.action import Receipt

logger = logging.getLogger(__name__)


def receipt_from_result(adapter: str, step_id: str, result: CommandResult, **metadata) -> Receipt:
    """Translate a runner result into a Receipt."""
    common = {
        "output": result.output,
        "truncated": result.truncated,
        "return_code": result.returncode,
        "duration_ms": result.duration_ms,
        "metadata": metadata,
    }
    if result.timed_out:
        return Receipt(adapter=adapter, step_id=step_id, status="timeout",
                       error="Action timed out and was terminated", **common)
    if result.error:
        return Receipt.failure(adapter, step_id, error=result.error, **common)
    if result.returncode != 0:
        return Receipt.failure(
            adapter, step_id, error=f"Command exited with code {result.returncode}", **common
        )
    return Receipt.success(adapter, step_id, **common)


def wrap_run_as(command: str | list[str], user: str) -> list[str]:
    """Build argv that runs ``command`` as ``user``.

    Uses ``runuser`` when already root (no PAM prompt), ``sudo -n``
    otherwise. The environment is kept so exported secrets reach the
    command.
    """
    inner = ["sh", "-c", command] if isinstance(command, str) else list(command)
    if os.geteuid() == 0 and shutil.which("runuser"):
        return ["runuser", "-u", user, "--", *inner]
    return ["sudo", "-n", "-E", "-u", user, "--", *inner]


class ShellCommandAdapter(Adapter):
    """Execute shell commands and capture output.

    Action params:
        command (str | list): Shell string or argv list.
        run_as (str): Run as this user; cwd defaults to their home.
        env (dict): Extra environment variables.
        cwd (str): Working directory.
        stdin (str): Text piped to the command.
    """

    @property
    def name(self) -> str:
        return "command"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        command = context.params.get("command")
        if not command:
            return False, "Missing required param: 'command'"
        run_as = context.params.get("run_as")
        if run_as:
            try:
                pwd.getpwnam(run_as)
            except KeyError:
                return False, f"Unknown user for run_as: {run_as}"
        cwd = context.params.get("cwd")
        if cwd and not os.path.isdir(cwd):
            return False, f"Working directory does not exist: {cwd}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        command = params["command"]
        cwd = params.get("cwd")
        run_as = params.get("run_as")

        if run_as:
            if cwd is None:
                cwd = pwd.getpwnam(run_as).pw_dir
            command = wrap_run_as(command, run_as)

        env = {str(k): str(v) for k, v in (params.get("env") or {}).items()}
        env.update(context.env)

        logger.debug("Executing step %s (cwd=%s, run_as=%s)", context.step_id, cwd, run_as)
        result = run_command(
            command,
            env_overrides=env,
            cwd=cwd,
            stdin_data=params.get("stdin"),
            timeout=context.timeout,
            max_output_bytes=context.max_output_bytes,
            redact=context.redact,
        )
        return receipt_from_result(self.name, context.step_id, result, run_as=run_as, pid=result.pid)
