"""
Subprocess runner — the single place child processes are started.

Every adapter and probe goes through :func:`run_command`. It owns the
three guarantees the engine relies on:

- output is captured into a bounded tail buffer (stdout + stderr merged)
- the child runs in its own session, so a timeout kills the whole
  process group, not just the immediate child
- control only returns once the child is gone, including when the
  caller is interrupted mid-wait
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, Iterable

from hostprov.adapters.base import DEFAULT_MAX_OUTPUT_BYTES
from hostprov.core.models.secret import MASK

logger = logging.getLogger(__name__)

# Seconds between SIGTERM and SIGKILL when tearing a process group down
KILL_GRACE_SECONDS = 5.0

# Exit codes the shell uses for "could not run this at all"
NOT_RUNNABLE_CODES = (126, 127)

_MASK_BYTES = MASK.encode("utf-8")


@dataclass
class CommandResult:
    """Outcome of one child process."""

    returncode: int | None = None
    output: str = ""
    truncated: bool = False
    timed_out: bool = False
    error: str | None = None       # set when the process could not start
    duration_ms: int = 0
    pid: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out and self.returncode == 0

    @property
    def not_runnable(self) -> bool:
        """The command itself was missing or not executable."""
        return self.error is not None or self.returncode in NOT_RUNNABLE_CODES


class TailBuffer:
    """Keeps the last ``limit`` bytes written to it.

    Values in ``redact`` are masked before anything is dropped from the
    front, so a cut never leaves part of one behind. The last
    ``len(longest) - 1`` bytes stay pending until more data (or
    :meth:`text`) shows whether they start a value.
    """

    def __init__(self, limit: int = DEFAULT_MAX_OUTPUT_BYTES, redact: Iterable[str] = ()):
        self._limit = max(limit, 0)
        self._buf = bytearray()
        self._pending = bytearray()
        self._redact = sorted({v.encode("utf-8") for v in redact if v}, key=len, reverse=True)
        self._hold = max((len(v) for v in self._redact), default=1) - 1
        self.truncated = False

    def feed(self, data: bytes) -> None:
        if not self._redact:
            self._keep(data)
            return
        self._pending.extend(data)
        self._mask_pending()
        ready = len(self._pending) - self._hold
        if ready > 0:
            self._keep(self._pending[:ready])
            del self._pending[:ready]

    def text(self) -> str:
        if self._pending:
            self._mask_pending()
            self._keep(self._pending)
            self._pending.clear()
        return self._buf.decode("utf-8", errors="replace")

    def _mask_pending(self) -> None:
        data = bytes(self._pending)
        for raw in self._redact:
            data = data.replace(raw, _MASK_BYTES)
        self._pending = bytearray(data)

    def _keep(self, data: bytes | bytearray) -> None:
        self._buf.extend(data)
        overflow = len(self._buf) - self._limit
        if overflow > 0:
            del self._buf[:overflow]
            self.truncated = True


def _pump(stream: IO[bytes], buf: TailBuffer) -> None:
    """Drain a pipe into the tail buffer until EOF."""
    try:
        for chunk in iter(lambda: stream.read(4096), b""):
            buf.feed(chunk)
    except (OSError, ValueError):
        pass
    finally:
        stream.close()


def terminate_process_group(proc: subprocess.Popen, grace: float = KILL_GRACE_SECONDS) -> None:
    """SIGTERM the child's process group, SIGKILL it if it lingers.

    Returns once the child has been reaped.
    """
    if proc.poll() is not None:
        return
    for sig in (signal.SIGTERM, signal.SIGKILL):
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            break
        except PermissionError:
            proc.send_signal(sig)
        try:
            proc.wait(timeout=grace)
            break
        except subprocess.TimeoutExpired:
            logger.warning("Process group %d ignored %s", proc.pid, sig.name)
    proc.wait()
    logger.debug("Process group %d terminated (rc=%s)", proc.pid, proc.returncode)


def run_command(
    cmd: str | list[str],
    *,
    shell: bool | None = None,
    env_overrides: dict[str, str] | None = None,
    cwd: str | None = None,
    stdin_data: str | None = None,
    timeout: float | None = None,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    kill_grace: float = KILL_GRACE_SECONDS,
    redact: Iterable[str] = (),
) -> CommandResult:
    """Run a command, capture its combined output, enforce a time bound.

    Args:
        cmd: Shell string or argv list.
        shell: Run through ``sh -c``. Defaults to True for strings.
        env_overrides: Extra environment variables for the child.
        cwd: Working directory.
        stdin_data: Text fed to the child's stdin, then closed.
        timeout: Seconds before the process group is killed.
        max_output_bytes: Output kept (tail) in the result.
        kill_grace: Seconds between SIGTERM and SIGKILL.
        redact: Values masked in the output before it is trimmed.

    Returns:
        CommandResult. Never raises for command failures; only
        re-raises interrupts after the child is gone.
    """
    if shell is None:
        shell = isinstance(cmd, str)

    env = os.environ.copy()
    if env_overrides:
        env.update(env_overrides)

    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            cmd,
            shell=shell,
            stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=cwd,
            env=env,
            start_new_session=True,
        )
    except FileNotFoundError as e:
        return CommandResult(returncode=127, error=f"Command not found: {e.filename or cmd}")
    except (OSError, ValueError) as e:
        return CommandResult(error=f"Cannot start command: {e}")

    buf = TailBuffer(max_output_bytes, redact=redact)
    assert proc.stdout is not None
    reader = threading.Thread(target=_pump, args=(proc.stdout, buf), daemon=True)
    reader.start()

    timed_out = False
    try:
        if stdin_data is not None and proc.stdin is not None:
            try:
                proc.stdin.write(stdin_data.encode("utf-8"))
                proc.stdin.close()
            except BrokenPipeError:
                pass
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        logger.debug("Timeout after %ss, killing process group %d", timeout, proc.pid)
        terminate_process_group(proc, kill_grace)
    except BaseException:
        terminate_process_group(proc, kill_grace)
        raise
    finally:
        reader.join(timeout=kill_grace)

    return CommandResult(
        returncode=proc.returncode,
        output=buf.text(),
        truncated=buf.truncated,
        timed_out=timed_out,
        duration_ms=int((time.monotonic() - start) * 1000),
        pid=proc.pid,
    )
