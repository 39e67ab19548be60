"""
Domain models — Pydantic types for the provisioning engine.

All models are re-exported here for convenient access:

    from hostprov.core.models import Step, Action, ExecutionResult, Playbook
"""

from hostprov.core.models.action import Action, Receipt
from hostprov.core.models.playbook import Playbook
from hostprov.core.models.result import ErrorKind, ExecutionResult, StepStatus
from hostprov.core.models.secret import SecretSpec, SecretStore, SecretValue
from hostprov.core.models.state import ProvisionState, RunRecord
from hostprov.core.models.step import FailurePolicy, ProbeSpec, Step

__all__ = [
    # action.py
    "Action",
    "Receipt",
    # playbook.py
    "Playbook",
    # result.py
    "ErrorKind",
    "ExecutionResult",
    "StepStatus",
    # secret.py
    "SecretSpec",
    "SecretStore",
    "SecretValue",
    # state.py
    "ProvisionState",
    "RunRecord",
    # step.py
    "FailurePolicy",
    "ProbeSpec",
    "Step",
]
