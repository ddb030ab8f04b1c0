# orchestrator/schemas/__init__.py
"""
Pydantic Schemas for the Headscale Orchestrator
Organized by domain: desired state, live state, results, keys
"""

from .base import MessageResponse, ErrorResponse, HealthResponse
from .state import (
    User,
    Route,
    ACLRule,
    SSHRule,
    ACLPolicy,
    DesiredState,
    EXIT_NODE_PREFIXES,
    normalize_prefix,
)
from .live import LiveUser, LiveNode, LiveRoute
from .keys import AuthKeyRequest, AuthKey
from .results import (
    ApplyRequest,
    ApplyResult,
    DriftReport,
    ValidationResult,
    RunResponse,
)

__all__ = [
    # Base
    "MessageResponse",
    "ErrorResponse",
    "HealthResponse",
    # Desired state
    "User",
    "Route",
    "ACLRule",
    "SSHRule",
    "ACLPolicy",
    "DesiredState",
    "EXIT_NODE_PREFIXES",
    "normalize_prefix",
    # Live state
    "LiveUser",
    "LiveNode",
    "LiveRoute",
    # Keys
    "AuthKeyRequest",
    "AuthKey",
    # Results
    "ApplyRequest",
    "ApplyResult",
    "DriftReport",
    "ValidationResult",
    "RunResponse",
]
