"""
Step executor — runs one step's action and builds its ExecutionResult.

The executor is the only component that reads raw secret values. It
fills placeholders, exports the step's declared secrets to the child
environment, dispatches through the adapter registry, and scrubs every
sensitive value out of the captured output before the result exists.

Flow:
    preconditions → render → dispatch → redact → verify postconditions → result
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime

from hostprov.adapters.base import DEFAULT_MAX_OUTPUT_BYTES, ExecutionContext
from hostprov.adapters.registry import AdapterRegistry
from hostprov.core.engine.prober import ProbeOutcome, Prober
from hostprov.core.engine.templating import render_params
from hostprov.core.models.action import Receipt
from hostprov.core.models.result import ErrorKind, ExecutionResult, StepStatus
from hostprov.core.models.secret import MASK, SecretValue, secret_env_name
from hostprov.core.models.step import Step

logger = logging.getLogger(__name__)

REDACTED = MASK


def redact(text: str | None, secrets: list[SecretValue]) -> str | None:
    """Replace every sensitive secret value in ``text``.

    Longest values first so a secret that contains another is fully
    masked.
    """
    if not text:
        return text
    for raw in sorted((s.reveal() for s in secrets if s.sensitive), key=len, reverse=True):
        if raw:
            text = text.replace(raw, REDACTED)
    return text


class Executor:
    """Runs steps with their secrets through the adapter registry.

    Args:
        registry: Dispatch for action kinds.
        prober: Used for pre/postcondition checks.
        variables: Non-secret run variables (site name, playbook vars).
        max_output_bytes: Captured output kept per step (tail).
        redact_also: Sensitive values to scrub even when the step did not
            declare them (every collected secret, normally).
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        prober: Prober,
        variables: dict[str, str] | None = None,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        redact_also: list[SecretValue] | None = None,
    ):
        self._registry = registry
        self._prober = prober
        self._variables = dict(variables or {})
        self._max_output_bytes = max_output_bytes
        self._redact_also = list(redact_also or [])

    def execute(
        self,
        step: Step,
        secrets: dict[str, SecretValue],
        attempt: int = 1,
    ) -> ExecutionResult:
        """Run the step's action once.

        Args:
            step: The step to run.
            secrets: Values the step declared a need for.
            attempt: 1-based attempt number (recorded in the result).

        Returns:
            ExecutionResult with status ``succeeded`` or ``failed``.
            Warn/retry handling belongs to the recovery controller.
        """
        started_at = datetime.now(UTC).isoformat()
        start = time.monotonic()
        scrub = list(secrets.values()) + self._redact_also

        def _result(status: StepStatus, output: str = "", truncated: bool = False,
                    kind: ErrorKind | None = None, error: str | None = None) -> ExecutionResult:
            return ExecutionResult(
                step_id=step.id,
                status=status,
                start_time=started_at,
                duration_ms=int((time.monotonic() - start) * 1000),
                truncated_output=redact(output, scrub) or "",
                output_truncated=truncated,
                attempts=attempt,
                error_kind=kind,
                error=redact(error, scrub),
            )

        unmet = self._prober.unmet_preconditions(step)
        if unmet:
            logger.info("Step %s: preconditions not met: %s", step.id, "; ".join(unmet))
            return _result(StepStatus.FAILED, kind=ErrorKind.PRECONDITION,
                           error="Precondition not met: " + "; ".join(unmet))

        context = self._build_context(step, secrets, scrub)
        logger.info("▶ %s: %s (attempt %d)", step.id, step.action.describe(), attempt)
        receipt = self._registry.execute_action(context)
        logger.debug("Step %s → %s", step.id, receipt_summary(receipt))

        if receipt.status == "timeout":
            logger.warning("Step %s timed out after %ss", step.id, step.timeout)
            return _result(StepStatus.FAILED, receipt.output, receipt.truncated,
                           ErrorKind.TIMEOUT, receipt.error)
        if receipt.failed:
            return _result(StepStatus.FAILED, receipt.output, receipt.truncated,
                           ErrorKind.EXECUTION, receipt.error)

        if step.verify and step.postconditions:
            outcome = self._prober.check_all(step.postconditions)
            if outcome is ProbeOutcome.NOT_SATISFIED:
                return _result(StepStatus.FAILED, receipt.output, receipt.truncated,
                               ErrorKind.POSTCONDITION,
                               "Action succeeded but postcondition does not hold")
            if outcome is ProbeOutcome.UNKNOWN:
                logger.warning("Step %s: postcondition could not be verified", step.id)

        return _result(StepStatus.SUCCEEDED, receipt.output, receipt.truncated)

    def _build_context(
        self, step: Step, secrets: dict[str, SecretValue], scrub: list[SecretValue]
    ) -> ExecutionContext:
        raw = {name: value.reveal() for name, value in secrets.items()}
        values = {**self._variables, **raw}
        return ExecutionContext(
            step_id=step.id,
            action=step.action,
            params=render_params(step.action.params, values),
            env={secret_env_name(name): value for name, value in raw.items()},
            variables=dict(self._variables),
            secrets=raw,
            redact=[s.reveal() for s in scrub if s.sensitive],
            timeout=step.timeout,
            max_output_bytes=self._max_output_bytes,
        )

    def dry_run(self, step: Step) -> ExecutionResult:
        """What ``execute`` would do, without doing it."""
        return ExecutionResult.skipped(
            step.id,
            detail="dry-run",
            truncated_output=f"[dry-run] would run {step.action.kind}: {step.action.describe()}",
        )


def receipt_summary(receipt: Receipt) -> str:
    """One-line status for debug logs."""
    return f"{receipt.adapter}:{receipt.status} rc={receipt.return_code} {receipt.duration_ms}ms"
