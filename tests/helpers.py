"""
Test helpers — an in-memory host and secret stores.
"""

from __future__ import annotations

from pydantic import SecretStr

from hostprov.core.models.action import Action
from hostprov.core.models.secret import SecretStore, SecretValue
from hostprov.core.models.step import ProbeSpec, Step


class FakeHost:
    """In-memory host: a step is converged once its action has run."""

    def __init__(self) -> None:
        self.done: set[str] = set()
        self.runs: list[str] = []

    def action(self, step_id: str, output: str = "", fail: bool = False):
        def _act(context):
            self.runs.append(step_id)
            if fail:
                raise RuntimeError(f"{step_id} broke")
            self.done.add(step_id)
            return output or f"{step_id} done"

        _act.__name__ = f"provision_{step_id}"
        return _act

    def converged(self, step_id: str):
        return lambda variables: step_id in self.done

    def step(
        self,
        step_id: str,
        depends_on: tuple[str, ...] = (),
        policy: str = "abort",
        fail: bool = False,
        output: str = "",
        **kwargs,
    ) -> Step:
        return Step(
            id=step_id,
            depends_on=list(depends_on),
            action=Action(kind="python", func=self.action(step_id, output, fail)),
            postconditions=[ProbeSpec(kind="python", func=self.converged(step_id))],
            failure_policy=policy,
            **kwargs,
        )


def secret_store(**values: str) -> SecretStore:
    store = SecretStore()
    for name, value in values.items():
        store.add(SecretValue(name=name, value=SecretStr(value)))
    return store
