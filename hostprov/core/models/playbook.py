"""
Playbook model — the whole declaration for one provisioning run.

Loaded from YAML by the config loader::

    name: erp-stack
    confirm: "Have you backed up your databases?"
    secrets:
      - name: db_root_password
        prompt: "Database root password"
    vars:
      bench_user: frappe
    steps:
      - id: packages
        action: {kind: package, names: [nginx]}
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from hostprov.core.models.secret import SecretSpec
from hostprov.core.models.step import Step


class Playbook(BaseModel):
    """Secrets, variables and steps for one host."""

    name: str
    description: str = ""
    confirm: str = ""           # confirmation asked before any prompt for secrets
    requires_root: bool = True
    vars: dict[str, str] = Field(default_factory=dict)
    secrets: list[SecretSpec] = Field(default_factory=list)
    steps: list[Step] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_references(self) -> Playbook:
        declared = {s.name for s in self.secrets}
        seen: set[str] = set()
        for spec in self.secrets:
            if spec.name in seen:
                raise ValueError(f"Duplicate secret '{spec.name}'")
            seen.add(spec.name)
        for step in self.steps:
            missing = [n for n in step.secrets if n not in declared]
            if missing:
                raise ValueError(
                    f"Step '{step.id}' uses undeclared secret(s): {', '.join(missing)}"
                )
        return self

    @property
    def needs_privilege(self) -> bool:
        return self.requires_root and any(s.privileged for s in self.steps)

    def get_step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None
