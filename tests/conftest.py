"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from hostprov.adapters.registry import AdapterRegistry, build_default_registry
from hostprov.core.engine.executor import Executor
from hostprov.core.engine.planner import plan
from hostprov.core.engine.prober import Prober
from hostprov.core.engine.recovery import RecoveryController
from hostprov.core.engine.runner import StepRunner
from hostprov.core.models.secret import SecretStore
from hostprov.core.models.step import Step
from hostprov.core.persistence.run_log import RunLog, RunSummary, generate_run_id, run_log_path

from tests.helpers import FakeHost


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def run_steps(tmp_state_dir: Path):
    """Run steps through the full engine; returns the RunSummary."""

    def _run(
        steps: list[Step],
        secrets: SecretStore | None = None,
        registry: AdapterRegistry | None = None,
        variables: dict[str, str] | None = None,
        abort_scope: str = "run",
        dry_run: bool = False,
    ) -> RunSummary:
        store = secrets or SecretStore()
        prober = Prober(variables)
        executor = Executor(
            registry or build_default_registry(),
            prober,
            variables=variables,
            redact_also=store.sensitive_values(),
        )
        recovery = RecoveryController(base_delay=0, jitter=0, sleep=lambda s: None)
        run_id = generate_run_id()
        with RunLog(run_log_path(tmp_state_dir, run_id), run_id) as log:
            runner = StepRunner(executor, prober, recovery, log, abort_scope=abort_scope, dry_run=dry_run)
            return runner.run(plan(steps), store)

    return _run
