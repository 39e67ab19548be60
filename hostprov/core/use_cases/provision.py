"""
Provision use case — run a playbook against this host.

The full vertical slice from operator intent to recorded outcome:

    load playbook → plan → privilege + state dir checks → confirmation → secrets
      → run (probe / execute / recover / record) → persist state

Planning happens before any prompt so a broken playbook never costs the
operator their typing. Nothing touches the host before the secrets are
in hand.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable

import click

from hostprov.adapters.registry import AdapterRegistry, build_default_registry
from hostprov.core.config.loader import load_playbook
from hostprov.core.config.settings import RunConfig
from hostprov.core.engine.executor import Executor
from hostprov.core.engine.planner import RunPlan, plan
from hostprov.core.engine.prober import Prober
from hostprov.core.engine.recovery import RecoveryController
from hostprov.core.engine.runner import ResultCallback, StepRunner
from hostprov.core.errors import (
    ConfigError,
    ConfirmationDeclined,
    PlanError,
    PrivilegeError,
    ValidationError,
)
from hostprov.core.models.playbook import Playbook
from hostprov.core.models.secret import SecretStore
from hostprov.core.models.state import RunRecord
from hostprov.core.observability.logging_config import redact_secrets_in_logs
from hostprov.core.persistence.run_log import (
    EXIT_INTERRUPTED,
    EXIT_INVALID,
    RunLog,
    RunSummary,
    generate_run_id,
    run_log_path,
)
from hostprov.core.persistence.state_file import default_state_path, load_state, save_state
from hostprov.core.preflight import check_privilege, check_state_dir
from hostprov.core.secrets.collector import SecretCollector, confirm_backup

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Result of one provisioning run."""

    playbook: Playbook | None = None
    plan: RunPlan | None = None
    summary: RunSummary | None = None
    error: str | None = None
    exit_code: int = 0

    def to_dict(self) -> dict:
        result: dict = {"exit_code": self.exit_code}
        if self.error:
            result["error"] = self.error
        if self.playbook:
            result["playbook"] = self.playbook.name
        if self.summary:
            result["summary"] = self.summary.to_dict()
        return result


def load_and_plan(playbook_path: Path | None) -> tuple[Playbook, RunPlan]:
    """Load a playbook and order its steps.

    Raises:
        ConfigError: Unreadable or invalid playbook.
        PlanError: Duplicate ids, unknown dependencies, or a cycle.
    """
    playbook = load_playbook(playbook_path)
    return playbook, plan(playbook.steps)


def run_variables(playbook: Playbook, config: RunConfig, secrets: SecretStore | None = None) -> dict[str, str]:
    """Values available to ``{placeholders}`` in every step and probe.

    Non-sensitive collected values (a site name, say) are ordinary
    variables; sensitive ones are only ever handed to the executor.
    """
    variables = {**playbook.vars, **config.vars}
    if secrets is not None:
        for name in secrets.names():
            value = secrets.get(name)
            if value is not None and not value.sensitive:
                variables[name] = value.reveal()
    elif config.site_name:
        variables["site_name"] = config.site_name
    return variables


def provision(
    playbook_path: Path | None,
    config: RunConfig,
    *,
    registry: AdapterRegistry | None = None,
    collector: SecretCollector | None = None,
    confirm: Callable[..., bool] = click.confirm,
    recovery: RecoveryController | None = None,
    on_result: ResultCallback | None = None,
) -> ProvisionResult:
    """Run a playbook.

    Args:
        playbook_path: Playbook file. None searches upward for provision.yml.
        config: Run options.
        registry: Adapter registry (defaults to every built-in adapter).
        collector: Secret collector (defaults from ``config``).
        confirm: Confirmation prompt, injected for tests.
        recovery: Recovery controller (defaults from ``config``).
        on_result: Called after every recorded step result.

    Returns:
        ProvisionResult. Invalid invocations carry ``error`` and exit 2;
        they never touch the host.
    """
    result = ProvisionResult()

    # ── Playbook + plan ──────────────────────────────────────────
    try:
        playbook, run_plan = load_and_plan(playbook_path)
    except (ConfigError, PlanError) as e:
        result.error = str(e)
        result.exit_code = EXIT_INVALID
        return result
    result.playbook = playbook
    result.plan = run_plan

    # ── Preflight ────────────────────────────────────────────────
    try:
        check_privilege(playbook, dry_run=config.dry_run)
        check_state_dir(config.state_dir)
        confirm_backup(
            playbook.confirm,
            skip=config.skip_backup_confirmation or config.dry_run,
            interactive=not config.non_interactive,
            confirm=confirm,
        )
    except (PrivilegeError, ConfigError, ConfirmationDeclined, ValidationError) as e:
        result.error = str(e)
        result.exit_code = EXIT_INVALID
        return result
    except click.Abort:
        result.error = "Interrupted at confirmation; nothing was changed"
        result.exit_code = EXIT_INTERRUPTED
        return result

    # ── Secrets ──────────────────────────────────────────────────
    if collector is None:
        collector = SecretCollector(
            interactive=not config.non_interactive,
            preset=config.preset_values(),
        )
    try:
        secrets = collector.collect_all(playbook.secrets)
    except ValidationError as e:
        result.error = f"Invalid value for {e}"
        result.exit_code = EXIT_INVALID
        return result
    except (KeyboardInterrupt, click.Abort):
        result.error = "Interrupted while collecting values; nothing was changed"
        result.exit_code = EXIT_INTERRUPTED
        return result

    redact_secrets_in_logs(secrets.sensitive_values())

    # ── Engine ───────────────────────────────────────────────────
    variables = run_variables(playbook, config, secrets)
    prober = Prober(variables)
    executor = Executor(
        registry or build_default_registry(),
        prober,
        variables=variables,
        max_output_bytes=config.max_output_bytes,
        redact_also=secrets.sensitive_values(),
    )
    if recovery is None:
        recovery = RecoveryController(
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )

    # ── Run ──────────────────────────────────────────────────────
    run_id = generate_run_id()
    log_path = run_log_path(config.state_dir, run_id)
    started_at = datetime.now(UTC).isoformat()
    logger.info("Run %s: %d step(s) from '%s'", run_id, len(run_plan), playbook.name)

    run_log = RunLog(log_path, run_id)
    try:
        run_log.open()
    except (OSError, RuntimeError) as e:
        result.error = f"Cannot open run log: {e}"
        result.exit_code = EXIT_INVALID
        return result

    try:
        runner = StepRunner(
            executor,
            prober,
            recovery,
            run_log,
            abort_scope=config.abort_scope,
            dry_run=config.dry_run,
            on_result=on_result,
        )
        summary = runner.run(run_plan, secrets)
    finally:
        run_log.close()

    result.summary = summary
    result.exit_code = summary.exit_code

    # ── Persist state ────────────────────────────────────────────
    _save_run_state(config, playbook, summary, started_at)
    return result


def _save_run_state(config: RunConfig, playbook: Playbook, summary: RunSummary, started_at: str) -> None:
    state_path = default_state_path(config.state_dir)
    state = load_state(state_path)
    state.last_run = RunRecord(
        run_id=summary.run_id,
        playbook=playbook.name,
        started_at=started_at,
        ended_at=datetime.now(UTC).isoformat(),
        status=summary.status,
        exit_code=summary.exit_code,
        dry_run=config.dry_run,
        counts=dict(summary.counts),
        duration_ms=summary.total_duration_ms,
        log_path=str(summary.log_path or ""),
    )
    if not config.dry_run:
        for r in summary.results:
            state.step_status[r.step_id] = str(r.status)
    try:
        save_state(state, state_path)
    except OSError as e:
        # the run log already holds the full record
        logger.error("Could not save run state: %s", e)
