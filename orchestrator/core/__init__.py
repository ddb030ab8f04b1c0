# orchestrator/core/__init__.py
"""
Core reconciliation logic
"""

from .exceptions import (
    OrchestratorError,
    LoadError,
    ControlPlaneError,
    ConfigValidationError,
    ReconcileInProgressError,
)
from .metrics import MetricsSink
from .auth_keys import AuthKeyIssuer, parse_duration, generate_auth_key
from .loader import DesiredStateLoader
from .validator import PolicyValidator
from .reconciler import (
    Reconciler,
    ApplyOptions,
    StepResult,
    UsersStep,
    RoutesStep,
    ACLStep,
)
from .drift import DriftDetector
from .audit import RunHistory, run_history

__all__ = [
    # Errors
    "OrchestratorError",
    "LoadError",
    "ControlPlaneError",
    "ConfigValidationError",
    "ReconcileInProgressError",
    # Metrics
    "MetricsSink",
    # Auth keys
    "AuthKeyIssuer",
    "parse_duration",
    "generate_auth_key",
    # Desired state
    "DesiredStateLoader",
    "PolicyValidator",
    # Reconciliation
    "Reconciler",
    "ApplyOptions",
    "StepResult",
    "UsersStep",
    "RoutesStep",
    "ACLStep",
    "DriftDetector",
    # History
    "RunHistory",
    "run_history",
]
