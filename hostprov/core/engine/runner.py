"""
Run loop — drives every step of a plan through the gate.

For each step, in plan order::

    probe ──satisfied──▶ skipped
      │
      └─▶ execute ──ok──▶ succeeded
             │
             └─▶ recovery: retry ─▶ execute again (after backoff)
                           continue ─▶ warned
                           abort ─▶ failed, stop (scope-dependent)

Every step in the plan gets exactly one record in the run log, including
the ones that never ran because the run aborted or was interrupted.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from hostprov.core.engine.executor import Executor
from hostprov.core.engine.planner import RunPlan
from hostprov.core.engine.prober import ProbeOutcome, Prober
from hostprov.core.engine.recovery import (
    Decision,
    RecoveryController,
    StepLifecycle,
    StepState,
)
from hostprov.core.errors import RunInterrupted
from hostprov.core.models.result import ErrorKind, ExecutionResult, StepStatus
from hostprov.core.models.secret import SecretStore
from hostprov.core.models.step import Step
from hostprov.core.persistence.run_log import RunLog, RunSummary

logger = logging.getLogger(__name__)

ResultCallback = Callable[[ExecutionResult], None]


@contextmanager
def sigterm_as_interrupt() -> Iterator[None]:
    """Turn SIGTERM into :class:`RunInterrupted` for the duration.

    Signal handlers can only be installed from the main thread; elsewhere
    this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        raise RunInterrupted(signum)

    previous = signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


class StepRunner:
    """Runs one plan against the host and records every outcome.

    Args:
        executor: Runs actions (the only reader of secret values).
        prober: Idempotency gate.
        recovery: Failure policy decisions and retry backoff.
        run_log: Open run log; every result goes through it.
        abort_scope: ``run`` stops everything after an abort,
            ``dependents`` only skips steps that depend on the failed one.
        dry_run: Probe only; record what would run as skipped.
        on_result: Called after each record (progress output).
    """

    def __init__(
        self,
        executor: Executor,
        prober: Prober,
        recovery: RecoveryController,
        run_log: RunLog,
        abort_scope: str = "run",
        dry_run: bool = False,
        on_result: ResultCallback | None = None,
    ):
        self._executor = executor
        self._prober = prober
        self._recovery = recovery
        self._log = run_log
        self._abort_scope = abort_scope
        self._dry_run = dry_run
        self._on_result = on_result

    def run(self, plan: RunPlan, secrets: SecretStore) -> RunSummary:
        """Run every step of ``plan``. Returns the run summary.

        Interrupts (SIGINT, SIGTERM) do not propagate: the current step
        is recorded as failed, the rest as skipped-due-to-abort, and the
        summary reports the interruption.
        """
        recorded: set[str] = set()
        stop_reason = ""
        blocked: dict[str, str] = {}    # step id → id of the failed step that blocks it

        with sigterm_as_interrupt():
            current: Step | None = None
            try:
                for step in plan:
                    if stop_reason or step.id in blocked:
                        reason = stop_reason or f"dependency {blocked[step.id]} failed"
                        self._record(ExecutionResult.aborted(step.id, detail=reason), recorded)
                        continue

                    current = step
                    result = self._run_step(step, secrets)
                    self._record(result, recorded)
                    current = None

                    if result.status is StepStatus.FAILED:
                        if self._abort_scope == "dependents":
                            for dep in plan.dependents_of(step.id):
                                blocked.setdefault(dep, step.id)
                        else:
                            stop_reason = f"aborted after {step.id} failed"
            except KeyboardInterrupt as e:
                signum = getattr(e, "signum", None) or signal.SIGINT
                logger.error("Run interrupted by %s", signal.Signals(signum).name)
                self._log.interrupted = True
                if current is not None and current.id not in recorded:
                    self._record(
                        ExecutionResult(
                            step_id=current.id,
                            status=StepStatus.FAILED,
                            error_kind=ErrorKind.INTERRUPTED,
                            error=f"Interrupted by {signal.Signals(signum).name}",
                        ),
                        recorded,
                    )
                for step in plan:
                    if step.id not in recorded:
                        self._record(ExecutionResult.aborted(step.id, detail="interrupted"), recorded)

        return self._log.summarize()

    def _record(self, result: ExecutionResult, recorded: set[str]) -> None:
        # mark before writing; the interrupt handler trusts this set
        recorded.add(result.step_id)
        self._log.record(result)
        if self._on_result is not None:
            self._on_result(result)

    def _run_step(self, step: Step, secrets: SecretStore) -> ExecutionResult:
        life = StepLifecycle(step.id)
        life.transition(StepState.PROBING)
        outcome = self._prober.probe(step)

        if self._prober.should_skip(step, outcome):
            life.transition(StepState.SKIPPED)
            detail = "already-satisfied" if outcome is ProbeOutcome.SATISFIED else "probe-unknown"
            logger.info("⏭ %s: %s", step.id, detail)
            return ExecutionResult.skipped(step.id, detail=detail)

        if self._dry_run:
            life.transition(StepState.SKIPPED)
            return self._executor.dry_run(step)

        needed = secrets.select(step.secrets)
        attempt = 1
        while True:
            life.transition(StepState.RUNNING)
            result = self._executor.execute(step, needed, attempt=attempt)
            if result.ok:
                life.transition(StepState.SUCCEEDED)
                return result

            life.transition(StepState.FAILED)
            decision = self._recovery.on_failure(step, result, attempt)
            if decision is Decision.RETRY:
                self._recovery.wait_before_retry(step, attempt)
                attempt += 1
                continue
            if decision is Decision.CONTINUE:
                return result.with_status(StepStatus.WARNED)
            if step.rollback:
                logger.warning("Step %s rollback hint: %s", step.id, step.rollback)
            return result
