# orchestrator/schemas/base.py
"""
Base schemas for API responses
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageResponse(BaseModel):
    """Acknowledgement for mutating endpoints"""
    success: bool = True
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class ErrorResponse(BaseModel):
    """
    Standard error response
    Used for 4xx and 5xx responses
    """
    success: bool = False
    error: str
    error_code: str
    details: Optional[dict] = None
    timestamp: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "error": "Failed to load users from /app/data/users.yaml: file not found",
                "error_code": "LOAD_ERROR",
                "details": None,
                "timestamp": "2025-12-26T10:00:00Z"
            }
        }
    )


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = "healthy"
    service: str = "headscale-orchestrator"
    version: str = "1.0.0"
    uptime_seconds: Optional[float] = None
    time: int = Field(default_factory=lambda: int(utcnow().timestamp()))
    timestamp: datetime = Field(default_factory=utcnow)
