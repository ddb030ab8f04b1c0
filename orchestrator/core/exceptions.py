# orchestrator/core/exceptions.py
"""
Error taxonomy for the orchestrator core

- LoadError: desired-state document missing or malformed (fatal to the request)
- ControlPlaneError: a Headscale call failed (recorded per entity during apply)
- ConfigValidationError: referential integrity violation in desired state
- ReconcileInProgressError: another apply holds the reconciliation guard
"""

from typing import Optional


class OrchestratorError(Exception):
    """Base exception for orchestrator errors"""
    pass


class LoadError(OrchestratorError):
    """A desired-state document could not be loaded"""

    def __init__(self, document: str, path: str, reason: str):
        self.document = document
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load {document} from {path}: {reason}")


class ControlPlaneError(OrchestratorError):
    """A call to the control plane failed"""

    def __init__(
        self,
        operation: str,
        message: str,
        status_code: Optional[int] = None
    ):
        self.operation = operation
        self.message = message
        self.status_code = status_code
        detail = f"HTTP {status_code}: {message}" if status_code else message
        super().__init__(f"{operation} failed: {detail}")


class ConfigValidationError(OrchestratorError):
    """Desired state failed validation"""

    def __init__(self, errors: list):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class ReconcileInProgressError(OrchestratorError):
    """Raised when an apply is requested while another one is running"""

    def __init__(self):
        super().__init__("A reconciliation is already in progress")
