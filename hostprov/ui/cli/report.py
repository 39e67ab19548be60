"""
Reporter — human-readable run output.

Progress lines while a run is going, and the summary that is printed
at the end of every run, whatever its outcome.
"""

from __future__ import annotations

import click

from hostprov.core.engine.planner import RunPlan
from hostprov.core.models.result import ExecutionResult, StepStatus
from hostprov.core.persistence.run_log import RunSummary

_ICONS = {
    StepStatus.SKIPPED: ("⏭", "cyan"),
    StepStatus.SUCCEEDED: ("✅", "green"),
    StepStatus.FAILED: ("❌", "red"),
    StepStatus.WARNED: ("⚠️ ", "yellow"),
    StepStatus.SKIPPED_DUE_TO_ABORT: ("⛔", "white"),
}

_STATUS_COLORS = {"ok": "green", "warned": "yellow", "aborted": "red", "interrupted": "red"}


def _duration(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:.1f}s"


def _ids(summary: RunSummary, status: StepStatus) -> str:
    ids = summary.ids_with(status)
    return f" ({', '.join(ids)})" if ids else ""


def print_result(result: ExecutionResult) -> None:
    """One progress line per recorded step."""
    icon, color = _ICONS[result.status]
    click.secho(f"   {icon} {result.step_id}", fg=color, nl=False)
    extra = []
    if result.detail:
        extra.append(result.detail)
    if result.status in (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.WARNED):
        extra.append(_duration(result.duration_ms))
    if result.attempts > 1:
        extra.append(f"{result.attempts} attempts")
    click.echo(f"  ({', '.join(extra)})" if extra else "")
    if result.error and result.status in (StepStatus.FAILED, StepStatus.WARNED):
        click.echo(f"      {result.error_kind}: {result.error}")


def print_failure_output(result: ExecutionResult, lines: int = 15) -> None:
    """Tail of a failed step's (already redacted) output."""
    tail = result.truncated_output.rstrip().splitlines()[-lines:]
    if not tail:
        return
    click.secho(f"\n   Last output of {result.step_id}:", fg="white", bold=True)
    for line in tail:
        click.echo(f"     │ {line}")


def print_summary(summary: RunSummary, title: str = "") -> None:
    """The end-of-run summary. Printed on success, abort and interrupt."""
    click.echo()
    color = _STATUS_COLORS.get(summary.status, "white")
    click.secho(f"📋 {title or summary.run_id}: {summary.status}", fg=color, bold=True)
    ran = summary.count(StepStatus.SUCCEEDED) + summary.count(StepStatus.WARNED)
    click.echo(f"   Ran:      {ran}")
    click.echo(f"   Skipped:  {summary.count(StepStatus.SKIPPED)}")
    click.echo(f"   Warned:   {summary.count(StepStatus.WARNED)}")
    click.echo(f"   Failed:   {summary.count(StepStatus.FAILED)}" + _ids(summary, StepStatus.FAILED))
    aborted = summary.count(StepStatus.SKIPPED_DUE_TO_ABORT)
    if aborted:
        click.echo(f"   Not run:  {aborted}" + _ids(summary, StepStatus.SKIPPED_DUE_TO_ABORT))
    click.echo(f"   Duration: {_duration(summary.total_duration_ms)}")
    if summary.log_path:
        click.echo(f"   Log:      {summary.log_path}")

    for result in summary.results:
        if result.status is StepStatus.FAILED:
            print_failure_output(result)
    click.echo()


def print_plan(plan: RunPlan) -> None:
    for i, step in enumerate(plan, start=1):
        deps = f"  ← {', '.join(step.depends_on)}" if step.depends_on else ""
        click.secho(f"   {i:>2}. {step.id}", fg="cyan", nl=False)
        click.echo(f"  {step.action.describe()}{deps}")
        if step.description:
            click.echo(f"       {step.description}")
