"""Adapters — bindings for the host tools a run drives.

Public re-exports for convenient access.
"""

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.mock import MockAdapter
from hostprov.adapters.registry import AdapterRegistry, build_default_registry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
    "build_default_registry",
]
