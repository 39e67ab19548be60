"""
Python callable adapter — steps whose action is a function.

The function receives the :class:`ExecutionContext`. Returning a string
records it as output, returning ``False`` fails the step, raising fails
the step with the exception message. Time bounds use ``SIGALRM``, which
only works on the main thread; elsewhere the call is unbounded.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from contextlib import contextmanager
from typing import Iterator

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.runner import TailBuffer
from hostprov.core.errors import StepTimeout
from hostprov.core.models.action import Receipt

logger = logging.getLogger(__name__)


@contextmanager
def alarm_timeout(seconds: float | None) -> Iterator[None]:
    """Raise StepTimeout in the main thread after ``seconds``."""
    if not seconds or threading.current_thread() is not threading.main_thread():
        if seconds:
            logger.warning("Timeout of %ss not enforced outside the main thread", seconds)
        yield
        return

    def _expire(signum, frame):
        raise StepTimeout(seconds)

    previous = signal.signal(signal.SIGALRM, _expire)
    signal.setitimer(signal.ITIMER_REAL, seconds)
    try:
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0)
        signal.signal(signal.SIGALRM, previous)


class PythonCallableAdapter(Adapter):
    """Run ``action.func(context)`` in-process."""

    @property
    def name(self) -> str:
        return "python"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not callable(context.action.func):
            return False, "Action has no callable 'func'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        func = context.action.func
        assert func is not None
        start = time.monotonic()
        try:
            with alarm_timeout(context.timeout):
                value = func(context)
        except StepTimeout as e:
            return Receipt.timed_out(self.name, context.step_id, e.timeout,
                                     duration_ms=int((time.monotonic() - start) * 1000))
        except Exception as e:
            return Receipt.failure(self.name, context.step_id, error=f"{type(e).__name__}: {e}",
                                   duration_ms=int((time.monotonic() - start) * 1000))

        elapsed = int((time.monotonic() - start) * 1000)
        if value is False:
            return Receipt.failure(self.name, context.step_id,
                                   error="Callable reported failure", duration_ms=elapsed)
        output = value if isinstance(value, str) else ""
        buf = TailBuffer(context.max_output_bytes, redact=context.redact)
        buf.feed(output.encode("utf-8"))
        return Receipt.success(self.name, context.step_id, output=buf.text(),
                               truncated=buf.truncated, duration_ms=elapsed)
