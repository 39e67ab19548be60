"""
Tests for the use cases (provision, check, status/log) and preflight.
"""

import logging
import textwrap
from pathlib import Path

import click
import pytest
from pydantic import SecretStr

from hostprov.adapters.mock import MockAdapter
from hostprov.adapters.registry import AdapterRegistry
from hostprov.core import preflight
from hostprov.core.config.settings import RunConfig
from hostprov.core.engine.prober import ProbeOutcome
from hostprov.core.engine.recovery import RecoveryController
from hostprov.core.errors import PrivilegeError
from hostprov.core.models.playbook import Playbook
from hostprov.core.models.secret import SecretStore, SecretValue
from hostprov.core.models.step import Step
from hostprov.core.persistence.run_log import RunLog, run_log_path
from hostprov.core.persistence.state_file import default_state_path, load_state
from hostprov.core.secrets.collector import SecretCollector
from hostprov.core.use_cases import provision as provision_module
from hostprov.core.use_cases.check import check_playbook
from hostprov.core.use_cases.provision import provision, run_variables
from hostprov.core.use_cases.status import get_status, read_log

PLAYBOOK = """\
    name: stack
    requires_root: {root}
    vars:
      bench_user: frappe
    secrets:
      - name: db_root_password
      - name: site_name
        masked: false
    steps:
      - id: packages
        action: apt-get install -y nginx
      - id: site
        depends_on: [packages]
        secrets: [db_root_password, site_name]
        action: bench new-site {{site_name}} --db-root-password {{db_root_password}}
      - id: restart
        depends_on: [site]
        action: {{kind: service, operation: restart, names: [nginx]}}
"""


def _playbook(tmp_path: Path, root: bool = False, text: str = PLAYBOOK) -> Path:
    path = tmp_path / "provision.yml"
    path.write_text(textwrap.dedent(text).format(root=str(root).lower()))
    return path


def _collector(**values: str) -> SecretCollector:
    env = {f"HOSTPROV_SECRET_{k.upper()}": v for k, v in values.items()}
    return SecretCollector(interactive=False, env=env)


def _registry(*kinds: str) -> tuple[AdapterRegistry, dict[str, MockAdapter]]:
    registry = AdapterRegistry()
    mocks = {}
    for kind in kinds:
        mocks[kind] = MockAdapter(adapter_name=kind)
        registry.register(mocks[kind])
    return registry, mocks


def _config(tmp_path: Path, **kwargs) -> RunConfig:
    return RunConfig(state_dir=tmp_path / "state", skip_backup_confirmation=True,
                     non_interactive=True, **kwargs)


_NO_WAIT = RecoveryController(base_delay=0, jitter=0, sleep=lambda s: None)


# ── Provision ────────────────────────────────────────────────────


class TestProvision:
    def test_full_run(self, tmp_path: Path):
        registry, mocks = _registry("command", "service")
        result = provision(
            _playbook(tmp_path),
            _config(tmp_path),
            registry=registry,
            collector=_collector(db_root_password="r00t-pw", site_name="s1.local"),
            recovery=_NO_WAIT,
        )
        assert result.exit_code == 0, result.error
        assert [r.step_id for r in result.summary.results] == ["packages", "site", "restart"]

        site_ctx = mocks["command"].call_log[1]
        assert site_ctx.params["command"] == "bench new-site s1.local --db-root-password r00t-pw"
        assert mocks["service"].calls_for("restart") == 1

    def test_secret_not_in_log_or_state(self, tmp_path: Path):
        registry, mocks = _registry("command", "service")
        mocks["command"].set_failure("site", error="Access denied for r00t-pw", output="tried r00t-pw")
        result = provision(
            _playbook(tmp_path),
            _config(tmp_path),
            registry=registry,
            collector=_collector(db_root_password="r00t-pw", site_name="s1.local"),
        )
        site = result.summary.results[1]
        assert site.truncated_output == "tried ********"
        assert site.error == "Access denied for ********"
        for path in (tmp_path / "state").rglob("*"):
            if path.is_file():
                assert "r00t-pw" not in path.read_text()

    def test_state_file_written(self, tmp_path: Path):
        registry, _ = _registry("command", "service")
        result = provision(
            _playbook(tmp_path),
            _config(tmp_path),
            registry=registry,
            collector=_collector(db_root_password="pw", site_name="s1"),
        )
        state = load_state(default_state_path(tmp_path / "state"))
        assert state.last_run.run_id == result.summary.run_id
        assert state.last_run.playbook == "stack"
        assert state.last_run.status == "ok"
        assert state.step_status == {"packages": "succeeded", "site": "succeeded", "restart": "succeeded"}
        assert Path(state.last_run.log_path).is_file()

    def test_failure_exit_code_and_summary(self, tmp_path: Path):
        registry, mocks = _registry("command", "service")
        mocks["command"].set_failure("site", error="bench exploded")
        result = provision(
            _playbook(tmp_path),
            _config(tmp_path),
            registry=registry,
            collector=_collector(db_root_password="pw", site_name="s1"),
        )
        assert result.exit_code == 1
        statuses = {r.step_id: str(r.status) for r in result.summary.results}
        assert statuses == {"packages": "succeeded", "site": "failed", "restart": "skipped-due-to-abort"}
        assert mocks["service"].call_count == 0

    def test_privilege_checked_before_secrets(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr(preflight, "is_root", lambda: False)
        asked = []

        def prompt(*args, **kwargs):
            asked.append(args)
            return "x"

        registry, mocks = _registry("command", "service")
        result = provision(
            _playbook(tmp_path, root=True),
            RunConfig(state_dir=tmp_path / "state", skip_backup_confirmation=True),
            registry=registry,
            collector=SecretCollector(prompt=prompt),
        )
        assert result.exit_code == 2
        assert "must run as root" in result.error
        assert asked == []
        assert mocks["command"].call_count == 0
        assert not (tmp_path / "state").exists()

    def test_unusable_state_dir_stops_before_secrets(self, tmp_path: Path):
        not_a_dir = tmp_path / "notadir"
        not_a_dir.write_text("")
        asked = []

        def prompt(*args, **kwargs):
            asked.append(args)
            return "x"

        registry, mocks = _registry("command", "service")
        result = provision(
            _playbook(tmp_path),
            RunConfig(state_dir=not_a_dir, skip_backup_confirmation=True),
            registry=registry,
            collector=SecretCollector(prompt=prompt),
        )
        assert result.exit_code == 2
        assert "State directory" in result.error
        assert asked == []
        assert mocks["command"].call_count == 0

    def test_run_log_with_another_writer(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr(provision_module, "generate_run_id", lambda: "run-taken")
        state_dir = tmp_path / "state"
        holder = RunLog(run_log_path(state_dir, "run-taken"), "run-taken").open()
        try:
            registry, mocks = _registry("command", "service")
            result = provision(
                _playbook(tmp_path),
                _config(tmp_path),
                registry=registry,
                collector=_collector(db_root_password="r00t-pw", site_name="s1.local"),
            )
        finally:
            holder.close()
        assert result.exit_code == 2
        assert "already has a writer" in result.error
        assert mocks["command"].call_count == 0

    def test_cycle_stops_before_anything(self, tmp_path: Path):
        text = """\
            name: loop
            requires_root: {root}
            steps:
              - {{id: a, action: "true", depends_on: [b]}}
              - {{id: b, action: "true", depends_on: [a]}}
        """
        registry, mocks = _registry("command")
        result = provision(_playbook(tmp_path, text=text), _config(tmp_path), registry=registry)
        assert result.exit_code == 2
        assert "Dependency cycle" in result.error
        assert result.summary is None
        assert mocks["command"].call_count == 0

    def test_missing_secret_exits_2(self, tmp_path: Path):
        registry, mocks = _registry("command", "service")
        result = provision(
            _playbook(tmp_path),
            _config(tmp_path),
            registry=registry,
            collector=_collector(site_name="s1"),
        )
        assert result.exit_code == 2
        assert "db_root_password" in result.error
        assert mocks["command"].call_count == 0

    def test_confirmation_abort_is_interrupt(self, tmp_path: Path):
        text = PLAYBOOK.replace("    vars:", "    confirm: Backed up?\n    vars:", 1)

        def ctrl_c(*args, **kwargs):
            raise click.Abort()

        result = provision(
            _playbook(tmp_path, text=text),
            RunConfig(state_dir=tmp_path / "state"),
            confirm=ctrl_c,
        )
        assert result.exit_code == 3

    def test_dry_run_as_non_root(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr(preflight, "is_root", lambda: False)
        registry, mocks = _registry("command", "service")
        result = provision(
            _playbook(tmp_path, root=True),
            _config(tmp_path, dry_run=True),
            registry=registry,
            collector=_collector(db_root_password="pw", site_name="s1"),
        )
        assert result.exit_code == 0
        assert {r.detail for r in result.summary.results} == {"dry-run"}
        assert mocks["command"].call_count == 0
        state = load_state(default_state_path(tmp_path / "state"))
        assert state.last_run.dry_run
        assert state.step_status == {}

    def test_on_result_sees_every_step(self, tmp_path: Path):
        registry, _ = _registry("command", "service")
        seen = []
        provision(
            _playbook(tmp_path),
            _config(tmp_path),
            registry=registry,
            collector=_collector(db_root_password="pw", site_name="s1"),
            on_result=lambda r: seen.append(r.step_id),
        )
        assert seen == ["packages", "site", "restart"]

    def test_to_dict(self, tmp_path: Path):
        registry, _ = _registry("command", "service")
        result = provision(
            _playbook(tmp_path),
            _config(tmp_path),
            registry=registry,
            collector=_collector(db_root_password="pw", site_name="s1"),
        )
        data = result.to_dict()
        assert data["exit_code"] == 0
        assert data["playbook"] == "stack"
        assert data["summary"]["total"] == 3


class TestRunVariables:
    def test_non_sensitive_values_become_variables(self):
        playbook = Playbook(name="p", vars={"user": "frappe"})
        store = SecretStore()
        store.add(SecretValue(name="site_name", sensitive=False, value=SecretStr("s1")))
        store.add(SecretValue(name="pw", value=SecretStr("hidden")))
        variables = run_variables(playbook, RunConfig(vars={"extra": "1"}), store)
        assert variables == {"user": "frappe", "extra": "1", "site_name": "s1"}

    def test_site_name_without_secrets(self):
        variables = run_variables(Playbook(name="p"), RunConfig(site_name="s2"))
        assert variables["site_name"] == "s2"


# ── Preflight ────────────────────────────────────────────────────


class TestPreflight:
    def test_root_passes(self, monkeypatch):
        monkeypatch.setattr(preflight, "is_root", lambda: True)
        preflight.check_privilege(Playbook(name="p", steps=[Step(id="a", action="true")]))

    def test_non_root_refused(self, monkeypatch):
        monkeypatch.setattr(preflight, "is_root", lambda: False)
        with pytest.raises(PrivilegeError) as exc:
            preflight.check_privilege(Playbook(name="p", steps=[Step(id="a", action="true")]))
        assert isinstance(exc.value, PermissionError)

    def test_unprivileged_playbook(self, monkeypatch):
        monkeypatch.setattr(preflight, "is_root", lambda: False)
        preflight.check_privilege(Playbook(name="p", requires_root=False,
                                           steps=[Step(id="a", action="true")]))

    def test_dry_run_only_warns(self, monkeypatch, caplog):
        caplog.set_level(logging.WARNING, logger="hostprov.core.preflight")
        monkeypatch.setattr(preflight, "is_root", lambda: False)
        preflight.check_privilege(Playbook(name="p", steps=[Step(id="a", action="true")]), dry_run=True)
        assert "would refuse to start" in caplog.text


# ── Check ────────────────────────────────────────────────────────


class TestCheck:
    def test_reports_pending_and_satisfied(self, tmp_path: Path):
        marker = tmp_path / "done"
        marker.write_text("")
        path = tmp_path / "p.yml"
        path.write_text(textwrap.dedent(f"""\
            name: p
            steps:
              - id: done
                action: "true"
                postconditions: [{{kind: file_exists, path: "{marker}"}}]
              - id: todo
                action: "true"
        """))
        registry, _ = _registry("command")
        result = check_playbook(path, registry=registry)
        assert result.valid
        outcomes = {c.step_id: c.outcome for c in result.steps}
        assert outcomes == {"done": ProbeOutcome.SATISFIED, "todo": ProbeOutcome.NOT_SATISFIED}
        assert result.pending == ["todo"]

    def test_warnings(self, tmp_path: Path):
        path = tmp_path / "p.yml"
        path.write_text(textwrap.dedent("""\
            name: p
            steps:
              - id: a
                action: "echo {nobody_sets_this}"
              - id: b
                action: {kind: package, names: [nginx]}
        """))
        registry = AdapterRegistry()
        registry.register(MockAdapter(adapter_name="command", available=False))
        result = check_playbook(path, probe=False, registry=registry)
        assert result.valid
        assert result.steps == []
        text = "\n".join(result.warnings)
        assert "{nobody_sets_this}" in text
        assert "'command' tooling is not available" in text
        assert "no adapter for 'package'" in text

    def test_invalid(self, tmp_path: Path):
        path = tmp_path / "p.yml"
        path.write_text("name: p\nsteps:\n  - {id: a, action: 'true', depends_on: [ghost]}\n")
        result = check_playbook(path)
        assert not result.valid
        assert "unknown step 'ghost'" in result.errors[0]
        assert result.to_dict()["valid"] is False


# ── Status / log ─────────────────────────────────────────────────


class TestStatus:
    def test_empty_state_dir(self, tmp_path: Path):
        status = get_status(tmp_path)
        assert status.state is None
        assert status.runs == []
        assert read_log(tmp_path).error.startswith("No runs recorded")

    def test_after_runs(self, tmp_path: Path):
        registry, mocks = _registry("command", "service")
        mocks["command"].set_failure("site")
        for _ in range(2):
            provision(
                _playbook(tmp_path),
                _config(tmp_path),
                registry=registry,
                collector=_collector(db_root_password="pw", site_name="s1"),
            )
        status = get_status(tmp_path / "state")
        assert len(status.runs) == 2
        assert status.state.last_run.status == "aborted"
        assert status.to_dict()["step_status"]["restart"] == "skipped-due-to-abort"

        latest = read_log(tmp_path / "state")
        assert latest.run_id == status.runs[-1]
        assert [r.step_id for r in latest.results] == ["packages", "site", "restart"]
        assert latest.summary.exit_code == 1

        first = read_log(tmp_path / "state", status.runs[0])
        assert first.run_id == status.runs[0]

    def test_unknown_run(self, tmp_path: Path):
        result = read_log(tmp_path, "run-missing")
        assert "No run log" in result.error
        assert result.to_dict() == {"error": result.error}
