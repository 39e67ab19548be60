"""
Adapter base — the protocol contract between the executor and host tools.

This defines the abstract interface every adapter implements. The
executor only talks to the package manager, service manager, database
and shell through this protocol, never directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from hostprov.core.models.action import Action, Receipt

DEFAULT_MAX_OUTPUT_BYTES = 64 * 1024


class ExecutionContext(BaseModel):
    """Everything an adapter needs to run one action.

    ``params`` are the action params with placeholders already filled in.
    ``env`` holds extra environment for the child process (declared
    secrets are exported here, never on the command line).
    ``secrets`` carries raw values for python actions only; it is
    excluded from dumps and reprs. ``redact`` lists every sensitive value
    an adapter must mask in captured output before trimming it.
    """

    step_id: str
    action: Action
    params: dict[str, Any] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict, repr=False)
    variables: dict[str, str] = Field(default_factory=dict)
    secrets: dict[str, str] = Field(default_factory=dict, exclude=True, repr=False)
    redact: list[str] = Field(default_factory=list, exclude=True, repr=False)
    timeout: float | None = None
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform host side effects and return receipts.
    They NEVER raise exceptions; failures are captured in the Receipt.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name, is_available, validate, execute
        3. Register it in the AdapterRegistry under an action kind
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The action kind this adapter handles (e.g. 'command', 'package')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available.

        Should be fast and never raise.
        """

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt.

        MUST never raise exceptions. All failures are captured
        in the Receipt with status='failed' or 'timeout'.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
