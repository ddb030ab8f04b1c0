# orchestrator/schemas/live.py
"""
Live control-plane entities as reported by Headscale
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class LiveUser(BaseModel):
    """User registered in Headscale"""
    id: str
    name: str
    email: Optional[str] = None
    created_at: Optional[datetime] = None


class LiveNode(BaseModel):
    """Machine registered in Headscale"""
    id: str
    name: str
    given_name: Optional[str] = None
    user: Optional[str] = None
    ip_addresses: List[str] = Field(default_factory=list)
    online: bool = False
    last_seen: Optional[datetime] = None
    expiry: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)

    def matches(self, identifier: str) -> bool:
        """True if identifier is this node's given name or name"""
        return identifier in (self.given_name, self.name)


class LiveRoute(BaseModel):
    """Route advertised by a node"""
    id: str
    node: str
    prefix: str
    advertised: bool = True
    enabled: bool = False
    is_primary: bool = False
