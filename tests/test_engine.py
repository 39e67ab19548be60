"""
Tests for the run loop — the gate, failure policies, aborts, interrupts.
"""

import json
import os
import signal

from hostprov.adapters.mock import MockAdapter
from hostprov.adapters.registry import build_default_registry
from hostprov.core.models.action import Receipt
from hostprov.core.models.result import ErrorKind, StepStatus
from hostprov.core.models.step import Step
from hostprov.core.persistence.run_log import RunLog, read_run_log

from tests.helpers import secret_store


def _statuses(summary) -> dict[str, str]:
    return {r.step_id: str(r.status) for r in summary.results}


def _order(summary) -> list[str]:
    return [r.step_id for r in summary.results]


# ── Scenarios ────────────────────────────────────────────────────


class TestScenarios:
    def test_fan_out_all_succeed(self, host, run_steps):
        steps = [host.step("A"), host.step("B", ["A"]), host.step("C", ["A"])]
        summary = run_steps(steps)
        assert _order(summary) == ["A", "B", "C"]
        assert set(_statuses(summary).values()) == {"succeeded"}
        assert summary.exit_code == 0

    def test_log_order_matches_plan(self, host, run_steps):
        steps = [host.step("C", ["A"]), host.step("B", ["A"]), host.step("A")]
        summary = run_steps(steps)
        assert _order(summary) == ["A", "C", "B"]
        assert [r.step_id for r in read_run_log(summary.log_path)] == ["A", "C", "B"]

    def test_abort_in_dependents_scope_lets_independent_run(self, host, run_steps):
        steps = [host.step("A"), host.step("B", ["A"], fail=True), host.step("C", ["A"])]
        summary = run_steps(steps, abort_scope="dependents")
        assert _statuses(summary) == {"A": "succeeded", "B": "failed", "C": "succeeded"}
        assert summary.exit_code == 1

    def test_timeout_step(self, run_steps, tmp_path):
        step = Step(id="D", action="sleep 60", timeout=0.5)
        summary = run_steps([step])
        (result,) = summary.results
        assert result.status is StepStatus.FAILED
        assert result.error_kind is ErrorKind.TIMEOUT
        assert summary.exit_code == 1

    def test_timeout_with_warn_policy_exits_zero(self, run_steps):
        step = Step(id="D", action="sleep 60", timeout=0.5, failure_policy="warn-and-continue")
        summary = run_steps([step])
        assert summary.results[0].status is StepStatus.WARNED
        assert summary.results[0].error_kind is ErrorKind.TIMEOUT
        assert summary.exit_code == 0


# ── Idempotency ──────────────────────────────────────────────────


class TestIdempotency:
    def test_second_run_is_all_skipped(self, host, run_steps):
        steps = [host.step("A"), host.step("B", ["A"]), host.step("C", ["B"])]
        first = run_steps(steps)
        assert set(_statuses(first).values()) == {"succeeded"}

        second = run_steps(steps)
        assert set(_statuses(second).values()) == {"skipped"}
        assert all(r.detail == "already-satisfied" for r in second.results)
        assert host.runs == ["A", "B", "C"]
        assert second.exit_code == 0

    def test_partially_converged_host(self, host, run_steps):
        host.done.add("A")
        summary = run_steps([host.step("A"), host.step("B", ["A"])])
        assert _statuses(summary) == {"A": "skipped", "B": "succeeded"}
        assert host.runs == ["B"]

    def test_unknown_probe_runs_the_step(self, run_steps):
        step = Step(id="a", action={"func": lambda ctx: "ran"},
                    postconditions=[{"func": lambda v: None}], verify=False)
        summary = run_steps([step])
        assert summary.results[0].status is StepStatus.SUCCEEDED

    def test_unknown_probe_skip_on_unknown(self, run_steps):
        step = Step(id="a", action={"func": lambda ctx: "ran"},
                    postconditions=[{"func": lambda v: None}], skip_on_unknown=True)
        summary = run_steps([step])
        assert summary.results[0].status is StepStatus.SKIPPED

    def test_dry_run_changes_nothing(self, host, run_steps):
        host.done.add("A")
        summary = run_steps([host.step("A"), host.step("B", ["A"])], dry_run=True)
        assert _statuses(summary) == {"A": "skipped", "B": "skipped"}
        assert summary.results[1].detail == "dry-run"
        assert host.runs == []


# ── Failure policies ─────────────────────────────────────────────


class TestFailurePolicies:
    def test_abort_marks_remaining_steps(self, host, run_steps):
        steps = [
            host.step("A"),
            host.step("B", ["A"], fail=True),
            host.step("C", ["A"]),
            host.step("D"),
        ]
        summary = run_steps(steps)
        assert _statuses(summary) == {
            "A": "succeeded",
            "B": "failed",
            "C": "skipped-due-to-abort",
            "D": "skipped-due-to-abort",
        }
        assert summary.exit_code == 1
        assert summary.aborted
        assert "C" not in host.runs

    def test_aborted_steps_are_in_the_log(self, host, run_steps):
        steps = [host.step("A", fail=True), host.step("B"), host.step("C", ["B"])]
        summary = run_steps(steps)
        logged = {r.step_id: r.status for r in read_run_log(summary.log_path)}
        assert logged == {
            "A": StepStatus.FAILED,
            "B": StepStatus.SKIPPED_DUE_TO_ABORT,
            "C": StepStatus.SKIPPED_DUE_TO_ABORT,
        }

    def test_dependents_scope_blocks_transitive_dependents(self, host, run_steps):
        steps = [host.step("A", fail=True), host.step("B", ["A"]), host.step("C", ["B"]), host.step("D")]
        summary = run_steps(steps, abort_scope="dependents")
        assert _statuses(summary) == {
            "A": "failed",
            "B": "skipped-due-to-abort",
            "C": "skipped-due-to-abort",
            "D": "succeeded",
        }
        assert "dependency A failed" in summary.results[1].detail

    def test_warn_never_blocks_independent_steps(self, host, run_steps):
        steps = [
            host.step("A", policy="warn-and-continue", fail=True),
            host.step("B"),
            host.step("C", ["B"]),
        ]
        summary = run_steps(steps)
        assert _statuses(summary) == {"A": "warned", "B": "succeeded", "C": "succeeded"}
        assert summary.exit_code == 0
        assert summary.status == "warned"

    def test_dependents_of_warned_step_still_run(self, host, run_steps):
        steps = [host.step("A", policy="warn", fail=True), host.step("B", ["A"])]
        summary = run_steps(steps)
        assert _statuses(summary) == {"A": "warned", "B": "succeeded"}

    def test_retry_then_succeed(self, run_steps):
        mock = MockAdapter()
        mock.set_response(
            "flaky",
            Receipt.failure("command", "flaky", error="temporary"),
            Receipt.failure("command", "flaky", error="temporary"),
            Receipt.success("command", "flaky", output="ok"),
        )
        registry = build_default_registry()
        registry.register(mock)
        summary = run_steps([Step(id="flaky", action="apt-get update", failure_policy="retry(3)")],
                            registry=registry)
        (result,) = summary.results
        assert result.status is StepStatus.SUCCEEDED
        assert result.attempts == 3
        assert mock.calls_for("flaky") == 3

    def test_retry_exhausted_aborts(self, run_steps):
        mock = MockAdapter()
        mock.set_failure("flaky", error="still broken")
        registry = build_default_registry()
        registry.register(mock)
        steps = [Step(id="flaky", action="x", failure_policy="retry(2)"), Step(id="next", action="y")]
        summary = run_steps(steps, registry=registry)
        assert _statuses(summary) == {"flaky": "failed", "next": "skipped-due-to-abort"}
        assert summary.results[0].attempts == 3
        assert mock.calls_for("flaky") == 3

    def test_precondition_failure_follows_policy(self, run_steps):
        steps = [
            Step(id="needs-db", action="true", preconditions=["false"], failure_policy="warn"),
            Step(id="other", action="true"),
        ]
        summary = run_steps(steps)
        assert summary.results[0].status is StepStatus.WARNED
        assert summary.results[0].error_kind is ErrorKind.PRECONDITION
        assert summary.results[1].status is StepStatus.SUCCEEDED


# ── Secrets ──────────────────────────────────────────────────────


class TestSecretsNeverLeak:
    def test_log_scan(self, run_steps):
        password = "c0rrect-h0rse-battery"
        store = secret_store(db_root_password=password)
        steps = [
            Step(id="echo-env", action='echo "$HOSTPROV_SECRET_DB_ROOT_PASSWORD"',
                 secrets=["db_root_password"]),
            Step(id="echo-rendered", action="echo {db_root_password}; exit 1",
                 secrets=["db_root_password"], failure_policy="warn"),
            Step(id="python", action={"func": lambda ctx: f"pw is {ctx.secrets['db_root_password']}"},
                 secrets=["db_root_password"]),
            Step(id="raise", action={"func": lambda ctx: 1 / 0 if ctx.secrets else None},
                 secrets=["db_root_password"], failure_policy="warn"),
        ]
        summary = run_steps(steps, secrets=store)

        raw = summary.log_path.read_text()
        assert password not in raw
        for result in summary.results:
            assert password not in result.model_dump_json()
        assert "********" in raw
        assert len(raw.splitlines()) == 4


# ── Interrupts ───────────────────────────────────────────────────


class TestInterrupts:
    def test_sigterm_mid_step(self, host, run_steps):
        def terminate(ctx):
            os.kill(os.getpid(), signal.SIGTERM)
            return "unreachable"

        steps = [
            host.step("A"),
            Step(id="B", action={"func": terminate}, depends_on=["A"]),
            host.step("C"),
        ]
        summary = run_steps(steps)
        assert summary.interrupted
        assert summary.exit_code == 3
        assert _statuses(summary) == {"A": "succeeded", "B": "failed", "C": "skipped-due-to-abort"}
        assert summary.results[1].error_kind is ErrorKind.INTERRUPTED
        assert summary.results[2].detail == "interrupted"

    def test_keyboard_interrupt(self, run_steps):
        def ctrl_c(ctx):
            raise KeyboardInterrupt

        summary = run_steps([Step(id="a", action={"func": ctrl_c}), Step(id="b", action="true")])
        assert summary.exit_code == 3
        assert _statuses(summary) == {"a": "failed", "b": "skipped-due-to-abort"}

    def test_interrupt_right_after_a_write_records_once(self, run_steps, monkeypatch):
        write = RunLog.record
        calls = []

        def write_then_interrupt(log, result):
            write(log, result)
            calls.append(result.step_id)
            if len(calls) == 1:
                raise KeyboardInterrupt

        monkeypatch.setattr(RunLog, "record", write_then_interrupt)
        summary = run_steps([Step(id="a", action="true"), Step(id="b", action="true")])
        ids = [json.loads(line)["stepId"] for line in summary.log_path.read_text().splitlines()]
        assert ids == ["a", "b"]
        assert summary.exit_code == 3
        assert _statuses(summary) == {"a": "succeeded", "b": "skipped-due-to-abort"}

    def test_sigterm_handler_restored(self, run_steps):
        before = signal.getsignal(signal.SIGTERM)
        run_steps([Step(id="a", action="true")])
        assert signal.getsignal(signal.SIGTERM) == before


class TestRunLogFile:
    def test_one_json_line_per_step(self, host, run_steps):
        summary = run_steps([host.step("A"), host.step("B", ["A"])])
        lines = summary.log_path.read_text().splitlines()
        records = [json.loads(line) for line in lines]
        assert [r["stepId"] for r in records] == ["A", "B"]
        assert all({"status", "startTime", "durationMs", "truncatedOutput"} <= r.keys() for r in records)
