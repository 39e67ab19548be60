"""
Tests for the idempotency prober — probe kinds, negation, the gate.
"""

import socket
from pathlib import Path

import pytest

from hostprov.core.engine.prober import ProbeOutcome, Prober
from hostprov.core.models.step import ProbeSpec, Step


def _probe(data) -> ProbeSpec:
    return ProbeSpec.model_validate(data)


class TestProbeKinds:
    def test_command_exit_codes(self):
        prober = Prober()
        assert prober.check(_probe("true")) is ProbeOutcome.SATISFIED
        assert prober.check(_probe("false")) is ProbeOutcome.NOT_SATISFIED

    def test_missing_command_is_unknown(self):
        prober = Prober()
        assert prober.check(_probe("hostprov-no-such-binary-xyz")) is ProbeOutcome.UNKNOWN

    def test_command_timeout_is_unknown(self):
        spec = _probe({"command": "sleep 5", "timeout": 0.2})
        assert Prober().check(spec) is ProbeOutcome.UNKNOWN

    def test_command_renders_variables(self, tmp_path: Path):
        (tmp_path / "marker").write_text("x")
        spec = _probe("test -f {dir}/marker")
        assert Prober({"dir": str(tmp_path)}).check(spec) is ProbeOutcome.SATISFIED

    def test_file_exists(self, tmp_path: Path):
        target = tmp_path / "site_config.json"
        spec = _probe({"kind": "file_exists", "path": str(target)})
        assert Prober().check(spec) is ProbeOutcome.NOT_SATISFIED
        target.write_text("{}")
        assert Prober().check(spec) is ProbeOutcome.SATISFIED

    def test_file_contains(self, tmp_path: Path):
        cnf = tmp_path / "galera.cnf"
        cnf.write_text("[galera]\nwsrep_on=ON\n")
        spec = _probe({"kind": "file_contains", "path": str(cnf), "pattern": r"^wsrep_on=ON$"})
        assert Prober().check(spec) is ProbeOutcome.SATISFIED
        cnf.write_text("[galera]\nwsrep_on=OFF\n")
        assert Prober().check(spec) is ProbeOutcome.NOT_SATISFIED

    def test_file_contains_missing_file(self, tmp_path: Path):
        spec = _probe({"kind": "file_contains", "path": str(tmp_path / "nope"), "pattern": "x"})
        assert Prober().check(spec) is ProbeOutcome.NOT_SATISFIED

    def test_user_exists(self):
        assert Prober().check(_probe({"kind": "user_exists", "name": "root"})) is ProbeOutcome.SATISFIED
        missing = _probe({"kind": "user_exists", "name": "hostprov-nobody-xyz"})
        assert Prober().check(missing) is ProbeOutcome.NOT_SATISFIED

    def test_disk_free(self, tmp_path: Path):
        enough = _probe({"kind": "disk_free", "path": str(tmp_path), "min_bytes": 1})
        too_much = _probe({"kind": "disk_free", "path": str(tmp_path), "min_bytes": 10**18})
        assert Prober().check(enough) is ProbeOutcome.SATISFIED
        assert Prober().check(too_much) is ProbeOutcome.NOT_SATISFIED

    def test_disk_free_bad_path_is_unknown(self, tmp_path: Path):
        spec = _probe({"kind": "disk_free", "path": str(tmp_path / "missing"), "min_bytes": 1})
        assert Prober().check(spec) is ProbeOutcome.UNKNOWN

    def test_port_free(self):
        listener = socket.socket()
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        port = listener.getsockname()[1]
        try:
            busy = _probe({"kind": "port_free", "port": port})
            assert Prober().check(busy) is ProbeOutcome.NOT_SATISFIED
        finally:
            listener.close()
        assert Prober().check(_probe({"kind": "port_free", "port": port})) is ProbeOutcome.SATISFIED

    def test_python(self):
        assert Prober().check(_probe({"func": lambda v: True})) is ProbeOutcome.SATISFIED
        assert Prober().check(_probe({"func": lambda v: False})) is ProbeOutcome.NOT_SATISFIED

    def test_python_none_or_raise_is_unknown(self):
        def broken(variables):
            raise OSError("no access")

        assert Prober().check(_probe({"func": lambda v: None})) is ProbeOutcome.UNKNOWN
        assert Prober().check(_probe({"func": broken})) is ProbeOutcome.UNKNOWN

    def test_python_receives_variables(self):
        seen = {}
        Prober({"site_name": "s1"}).check(_probe({"func": lambda v: seen.update(v) or True}))
        assert seen == {"site_name": "s1"}


class TestNegation:
    def test_negate_flips(self):
        assert Prober().check(_probe({"command": "true", "negate": True})) is ProbeOutcome.NOT_SATISFIED
        assert Prober().check(_probe({"command": "false", "negate": True})) is ProbeOutcome.SATISFIED

    def test_negate_keeps_unknown(self):
        spec = _probe({"command": "hostprov-no-such-binary-xyz", "negate": True})
        assert Prober().check(spec) is ProbeOutcome.UNKNOWN


class TestGate:
    def test_no_postconditions_never_satisfied(self):
        step = Step(id="a", action="true")
        assert Prober().probe(step) is ProbeOutcome.NOT_SATISFIED

    def test_not_satisfied_beats_unknown(self):
        prober = Prober()
        specs = [_probe({"func": lambda v: None}), _probe("false")]
        assert prober.check_all(specs) is ProbeOutcome.NOT_SATISFIED

    def test_unknown_beats_satisfied(self):
        specs = [_probe("true"), _probe({"func": lambda v: None})]
        assert Prober().check_all(specs) is ProbeOutcome.UNKNOWN

    @pytest.mark.parametrize(
        "outcome, skip_on_unknown, expected",
        [
            (ProbeOutcome.SATISFIED, False, True),
            (ProbeOutcome.NOT_SATISFIED, False, False),
            (ProbeOutcome.UNKNOWN, False, False),
            (ProbeOutcome.UNKNOWN, True, True),
            (ProbeOutcome.NOT_SATISFIED, True, False),
        ],
    )
    def test_should_skip(self, outcome, skip_on_unknown, expected):
        step = Step(id="a", action="true", skip_on_unknown=skip_on_unknown)
        assert Prober().should_skip(step, outcome) is expected

    def test_unmet_preconditions(self):
        step = Step(id="a", action="true", preconditions=["true", "false"])
        unmet = Prober().unmet_preconditions(step)
        assert len(unmet) == 1
        assert "command(false)" in unmet[0]
