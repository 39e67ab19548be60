"""
Adapter registry — central dispatch for all action kinds.

The registry is the single point of adapter management. It handles
registration, lookup and action execution. The executor never talks
to adapters directly, only through the registry.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.core.models.action import Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Central registry and dispatcher for adapters, keyed by action kind."""

    def __init__(self) -> None:
        self._adapters: dict[str, Adapter] = {}

    def register(self, adapter: Adapter) -> None:
        """Register an adapter under its name (the action kind it serves)."""
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s", name)

    def get(self, name: str) -> Adapter | None:
        """Look up an adapter by name."""
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        """List all registered adapter names."""
        return list(self._adapters.keys())

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Get availability status of all registered adapters."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    def execute_action(self, context: ExecutionContext) -> Receipt:
        """Run the context's action through the adapter for its kind.

        1. Resolves the adapter
        2. Validates the action
        3. Executes
        4. Returns a Receipt (never raises, except for interrupts)
        """
        start_time = time.monotonic()
        kind = context.action.kind

        adapter = self._adapters.get(kind)
        if adapter is None:
            return Receipt.failure(kind, context.step_id, error=f"No adapter registered for '{kind}'")

        try:
            is_valid, error_msg = adapter.validate(context)
            if not is_valid:
                return Receipt.failure(kind, context.step_id, error=f"Validation failed: {error_msg}")
        except Exception as e:
            return Receipt.failure(kind, context.step_id, error=f"Validation error: {e}")

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            # Adapters should never raise, but defense in depth
            logger.error("Adapter %s raised during execution: %s", kind, e)
            receipt = Receipt.failure(kind, context.step_id, error=f"Unexpected error: {e}")

        if not receipt.duration_ms:
            receipt.duration_ms = int((time.monotonic() - start_time) * 1000)
        return receipt


def build_default_registry() -> AdapterRegistry:
    """Registry with every built-in adapter."""
    from hostprov.adapters.callable import PythonCallableAdapter
    from hostprov.adapters.shell.command import ShellCommandAdapter
    from hostprov.adapters.shell.filesystem import FilesystemAdapter
    from hostprov.adapters.system.database import DatabaseAdapter
    from hostprov.adapters.system.packages import PackageAdapter
    from hostprov.adapters.system.services import ServiceAdapter

    registry = AdapterRegistry()
    registry.register(ShellCommandAdapter())
    registry.register(PackageAdapter())
    registry.register(ServiceAdapter())
    registry.register(DatabaseAdapter())
    registry.register(FilesystemAdapter())
    registry.register(PythonCallableAdapter())
    return registry
