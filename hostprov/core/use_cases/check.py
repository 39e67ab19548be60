"""
Check use case — validate a playbook and probe the host, changing nothing.

Answers "what would a run do right now": which steps are already
satisfied, which would run, which placeholders nothing provides, and
which actions have no tooling on this host.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hostprov.adapters.registry import AdapterRegistry, build_default_registry
from hostprov.core.config.settings import RunConfig
from hostprov.core.engine.planner import RunPlan
from hostprov.core.engine.prober import ProbeOutcome, Prober
from hostprov.core.engine.templating import placeholders
from hostprov.core.errors import ConfigError, PlanError
from hostprov.core.models.playbook import Playbook
from hostprov.core.use_cases.provision import load_and_plan, run_variables


@dataclass
class StepCheck:
    step_id: str
    outcome: ProbeOutcome
    would_skip: bool


@dataclass
class CheckResult:
    """Result of validating and probing a playbook."""

    valid: bool = False
    playbook: Playbook | None = None
    plan: RunPlan | None = None
    steps: list[StepCheck] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def pending(self) -> list[str]:
        return [c.step_id for c in self.steps if not c.would_skip]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "playbook": self.playbook.name if self.playbook else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "steps": [
                {"id": c.step_id, "probe": str(c.outcome), "would_skip": c.would_skip}
                for c in self.steps
            ],
        }


def unresolved_placeholders(playbook: Playbook, extra_vars: dict[str, str] | None = None) -> list[str]:
    """Warnings for ``{name}`` tokens no variable or declared secret provides."""
    known = {*playbook.vars, *(extra_vars or {}), *(s.name for s in playbook.secrets)}
    warnings = []
    for step in playbook.steps:
        tokens = placeholders(step.action.params)
        for spec in (*step.preconditions, *step.postconditions):
            tokens |= placeholders(spec.params)
        unknown = sorted(tokens - known)
        if unknown:
            warnings.append(
                f"Step '{step.id}': no value for {', '.join('{' + t + '}' for t in unknown)} "
                "(left as-is)"
            )
    return warnings


def unavailable_adapters(playbook: Playbook, registry: AdapterRegistry) -> list[str]:
    """Warnings for action kinds whose host tool is missing here."""
    status = registry.adapter_status()
    warnings = []
    for step in playbook.steps:
        kind = step.action.kind
        if kind not in status:
            warnings.append(f"Step '{step.id}': no adapter for '{kind}' actions")
        elif not status[kind]["available"]:
            warnings.append(f"Step '{step.id}': '{kind}' tooling is not available on this host")
    return warnings


def check_playbook(
    playbook_path: Path | None,
    config: RunConfig | None = None,
    probe: bool = True,
    registry: AdapterRegistry | None = None,
) -> CheckResult:
    """Validate a playbook and, optionally, probe every step.

    Args:
        playbook_path: Playbook file. None searches upward for provision.yml.
        config: Run options (variables, site name).
        probe: Run the idempotency probes against this host.
        registry: Adapters whose availability is reported (defaults to
            every built-in adapter).
    """
    config = config or RunConfig()
    result = CheckResult()

    try:
        playbook, run_plan = load_and_plan(playbook_path)
    except (ConfigError, PlanError) as e:
        result.errors.append(str(e))
        return result

    result.playbook = playbook
    result.plan = run_plan
    result.valid = True
    result.warnings.extend(unresolved_placeholders(playbook, config.vars))
    result.warnings.extend(unavailable_adapters(playbook, registry or build_default_registry()))

    if probe:
        prober = Prober(run_variables(playbook, config))
        for step in run_plan:
            outcome = prober.probe(step)
            result.steps.append(StepCheck(step.id, outcome, prober.should_skip(step, outcome)))

    return result
