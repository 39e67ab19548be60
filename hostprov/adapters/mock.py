"""
Mock adapter — universal test double for any action kind.

Simulates adapter behavior without touching the host. Configurable to
return success, failure, or a custom receipt per step.
"""

from __future__ import annotations

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.core.models.action import Receipt


class MockAdapter(Adapter):
    """Universal mock adapter for testing.

    By default, returns success for everything. Can be configured
    with custom responses per step ID. A response list is consumed
    one receipt per call (the last one repeats), which is how retry
    tests script "fail, fail, succeed".
    """

    def __init__(
        self,
        adapter_name: str = "command",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._responses: dict[str, list[Receipt]] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        """Number of times execute has been called."""
        return len(self._call_log)

    def calls_for(self, step_id: str) -> int:
        return sum(1 for c in self._call_log if c.step_id == step_id)

    def is_available(self) -> bool:
        return self._available

    def set_response(self, step_id: str, *receipts: Receipt) -> None:
        """Set custom responses for a specific step ID."""
        self._responses[step_id] = list(receipts)

    def set_failure(self, step_id: str, error: str = "Mock failure", output: str = "") -> None:
        """Configure a specific step to fail."""
        self._responses[step_id] = [
            Receipt.failure(adapter=self._name, step_id=step_id, error=error, output=output)
        ]

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)

        queued = self._responses.get(context.step_id)
        if queued:
            return queued.pop(0) if len(queued) > 1 else queued[0]

        # Default: success
        return Receipt.success(
            adapter=self._name,
            step_id=context.step_id,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()
