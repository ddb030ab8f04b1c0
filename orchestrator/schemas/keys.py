# orchestrator/schemas/keys.py
"""
Pre-authentication key schemas
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime


class AuthKeyRequest(BaseModel):
    """Request to issue a pre-auth key"""
    user: str = Field(..., min_length=1, description="Owning Headscale user")
    ephemeral: bool = Field(
        default=False,
        description="Nodes registered with this key are removed when they go offline"
    )
    reusable: bool = Field(default=False, description="Key can register more than one node")
    expiration: Optional[str] = Field(
        None,
        description="Go-style duration (e.g. 24h, 90m); invalid values fall back to the default",
        examples=["24h", "1h30m"]
    )
    tags: List[str] = Field(default_factory=list)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user": "alice",
                "ephemeral": False,
                "reusable": True,
                "expiration": "72h",
                "tags": ["tag:server"]
            }
        }
    )


class AuthKey(BaseModel):
    """Pre-auth key issued by the control plane"""
    id: Optional[str] = None
    key: str
    user: str
    ephemeral: bool = False
    reusable: bool = False
    used: bool = False
    expiration: datetime
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
