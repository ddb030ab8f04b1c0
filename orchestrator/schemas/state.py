# orchestrator/schemas/state.py
"""
Desired-state schemas
Users, routes and the ACL policy as declared in the data directory
"""

import ipaddress
from dataclasses import dataclass
from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Optional, List, Dict, Tuple, Any

EXIT_NODE_PREFIXES = ("0.0.0.0/0", "::/0")


def normalize_prefix(prefix: str) -> str:
    """
    Normalize a CIDR prefix ("10.1.2.3/8" -> "10.0.0.0/8")

    Raises:
        ValueError: If prefix is not a valid IP network
    """
    return str(ipaddress.ip_network(prefix.strip(), strict=False))


class User(BaseModel):
    """A mesh user, identified by name"""
    name: str = Field(..., min_length=1, description="Headscale user name")
    email: Optional[str] = Field(None, description="Display email")
    tags: List[str] = Field(default_factory=list)

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "name": "alice",
                "email": "alice@example.com",
                "tags": ["tag:eng"]
            }
        }
    )

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("User name cannot be blank")
        return v

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: List[str]) -> List[str]:
        """Tags are a set; keep first occurrence order"""
        return list(dict.fromkeys(v))


class Route(BaseModel):
    """Subnet routes a node should have enabled"""
    node: str = Field(..., min_length=1, description="Node given name or name")
    routes: List[str] = Field(default_factory=list, description="CIDR prefixes")
    advertise_exit_node: bool = False

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "node": "office-gw",
                "routes": ["192.168.1.0/24"],
                "advertise_exit_node": False
            }
        }
    )

    def prefixes(self) -> List[str]:
        """
        Normalized prefixes this entry requires, exit-node prefixes included

        Raises:
            ValueError: If a prefix is not a valid CIDR
        """
        prefixes = [normalize_prefix(p) for p in self.routes]
        if self.advertise_exit_node:
            prefixes.extend(EXIT_NODE_PREFIXES)
        return list(dict.fromkeys(prefixes))


class ACLRule(BaseModel):
    """Network ACL rule, evaluated in order by Headscale"""
    action: str
    src: List[str]
    dst: List[str]
    comment: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class SSHRule(BaseModel):
    """Tailscale SSH rule"""
    action: str
    src: List[str]
    dst: List[str]
    users: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class ACLPolicy(BaseModel):
    """
    Headscale ACL policy document
    Attribute names are snake_case, document keys use Headscale naming
    """
    groups: Dict[str, List[str]] = Field(default_factory=dict)
    tag_owners: Dict[str, List[str]] = Field(default_factory=dict, alias="tagOwners")
    acls: List[ACLRule] = Field(default_factory=list)
    ssh: List[SSHRule] = Field(default_factory=list)
    auto_groups: Dict[str, List[str]] = Field(default_factory=dict, alias="autoGroups")
    hosts: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
    )

    @field_validator("groups", "tag_owners", "auto_groups", "hosts", mode="before")
    @classmethod
    def none_as_empty_mapping(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("acls", "ssh", mode="before")
    @classmethod
    def none_as_empty_list(cls, v: Any) -> Any:
        return [] if v is None else v

    def to_document(self) -> Dict[str, Any]:
        """Full document with Headscale key names, order preserved"""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_headscale(self) -> Dict[str, Any]:
        """Document pushed to Headscale; empty sections are omitted"""
        return {k: v for k, v in self.to_document().items() if v}


@dataclass(frozen=True)
class DesiredState:
    """Immutable snapshot of desired state for a single operation"""
    users: Tuple[User, ...]
    routes: Tuple[Route, ...]
    policy: ACLPolicy
