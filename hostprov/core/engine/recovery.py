"""
Recovery controller — what happens after a step fails.

The decision comes purely from the step's declared failure policy:

    abort              → ABORT
    warn-and-continue  → CONTINUE (recorded as ``warned``)
    retry(n)           → RETRY up to n more times, then ABORT

Per-step lifecycle (``StepLifecycle``):

    PENDING → PROBING → SKIPPED
                      → RUNNING → SUCCEEDED
                                → FAILED → RUNNING (retry only)

SKIPPED and SUCCEEDED are terminal; FAILED is terminal unless the
controller decides to retry.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Callable

from hostprov.core.models.result import ExecutionResult
from hostprov.core.models.step import Step

logger = logging.getLogger(__name__)


class Decision(StrEnum):
    """Recovery verdict for a failed step."""

    RETRY = "retry"
    ABORT = "abort"
    CONTINUE = "continue"


class StepState(StrEnum):
    """Lifecycle states of a step within one run."""

    PENDING = "pending"
    PROBING = "probing"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS: dict[StepState, set[StepState]] = {
    StepState.PENDING: {StepState.PROBING},
    StepState.PROBING: {StepState.SKIPPED, StepState.RUNNING},
    StepState.RUNNING: {StepState.SUCCEEDED, StepState.FAILED},
    StepState.FAILED: {StepState.RUNNING},
    StepState.SKIPPED: set(),
    StepState.SUCCEEDED: set(),
}


@dataclass
class StepLifecycle:
    """State machine for one step. Illegal transitions raise RuntimeError."""

    step_id: str
    state: StepState = StepState.PENDING
    history: list[StepState] = field(default_factory=list)

    def transition(self, target: StepState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Step '{self.step_id}': illegal transition {self.state} → {target}"
            )
        logger.debug("Step %s: %s → %s", self.step_id, self.state, target)
        self.history.append(self.state)
        self.state = target

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.state] or self.state is StepState.FAILED


class RecoveryController:
    """Maps (step, failed result, attempt) to a Decision.

    Args:
        base_delay: First retry delay in seconds.
        max_delay: Cap on a single delay.
        jitter: Fraction of the delay added at random (0 disables).
        sleep: Injected for tests.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        jitter: float = 0.3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._jitter = jitter
        self._sleep = sleep

    def on_failure(self, step: Step, result: ExecutionResult, attempt: int) -> Decision:
        """Decide what to do after ``attempt`` (1-based) failed."""
        policy = step.failure_policy
        if policy.kind == "warn-and-continue":
            logger.warning("Step %s failed, continuing (warn-and-continue): %s", step.id, result.error)
            return Decision.CONTINUE
        if policy.kind == "retry" and attempt <= policy.retries:
            return Decision.RETRY
        if policy.kind == "retry":
            logger.error("Step %s failed after %d attempt(s), aborting", step.id, attempt)
        else:
            logger.error("Step %s failed (abort): %s", step.id, result.error)
        return Decision.ABORT

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter for the retry after ``attempt``."""
        delay = min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)
        return delay + random.uniform(0, delay * self._jitter)

    def wait_before_retry(self, step: Step, attempt: int) -> float:
        delay = self.backoff_delay(attempt)
        logger.info(
            "Retrying %s in %.1fs (attempt %d/%d)",
            step.id,
            delay,
            attempt + 1,
            step.failure_policy.retries + 1,
        )
        if delay > 0:
            self._sleep(delay)
        return delay
