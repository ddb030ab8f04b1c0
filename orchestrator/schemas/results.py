# orchestrator/schemas/results.py
"""
Reconciliation request and result schemas
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime


class ApplyRequest(BaseModel):
    """Options for an apply run"""
    dry_run: bool = False
    force: bool = False
    validate_first: bool = Field(default=False, alias="validate")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {"dry_run": True, "force": False, "validate": True}
        }
    )


class ApplyResult(BaseModel):
    """Outcome of an apply run"""
    success: bool
    message: str
    changes: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    dry_run: bool = False
    stats: Dict[str, int] = Field(default_factory=dict)


class DriftReport(BaseModel):
    """Discrepancies between desired and live state"""
    has_drift: bool
    drifts: List[str] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    """Outcome of desired-state validation"""
    valid: bool
    message: str
    errors: List[str] = Field(default_factory=list)


class RunResponse(BaseModel):
    """Recorded apply or drift run"""
    id: int
    operation: str
    dry_run: bool
    success: bool
    message: Optional[str] = None
    changes_count: int = 0
    errors_count: int = 0
    details: Optional[Dict[str, Any]] = None
    started_at: datetime
    duration_ms: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)
