# orchestrator/clients/memory.py
"""
In-memory control plane

Keeps users, nodes, routes, policy and pre-auth keys in process memory.
Used by the test-suite and selectable for local development with
CONTROL_PLANE_BACKEND=memory.

Failure injection:
    >>> cp = InMemoryControlPlane()
    >>> cp.fail("create_user", "bob")
    >>> cp.create_user(User(name="bob"))  # raises ControlPlaneError
"""

import copy
import itertools
import threading
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from orchestrator.core.auth_keys import generate_auth_key
from orchestrator.core.exceptions import ControlPlaneError
from orchestrator.schemas.state import User, ACLPolicy, normalize_prefix
from orchestrator.schemas.live import LiveUser, LiveNode, LiveRoute
from orchestrator.schemas.keys import AuthKey
from .base import ControlPlane

logger = logging.getLogger(__name__)


class InMemoryControlPlane(ControlPlane):
    """Thread-safe fake of the Headscale API"""

    def __init__(self, record: bool = True):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._users: Dict[str, LiveUser] = {}
        self._nodes: Dict[str, LiveNode] = {}
        self._routes: Dict[str, LiveRoute] = {}
        self._policy: Optional[Dict[str, Any]] = None
        self._keys: Dict[str, AuthKey] = {}
        self._failures: Dict[Tuple[str, str], str] = {}

        # Call logs are kept only when record is set; a long-running
        # service builds this backend with record=False
        self.record = record
        # (operation, target) for every mutating call that succeeded
        self.mutations: List[Tuple[str, str]] = []
        # (operation, target) for every call, reads included
        self.calls: List[Tuple[str, str]] = []

    # ==========================================================================
    # Seeding & failure injection
    # ==========================================================================

    def add_user(self, name: str, email: Optional[str] = None) -> LiveUser:
        with self._lock:
            user = LiveUser(
                id=str(next(self._ids)), name=name, email=email,
                created_at=datetime.now(timezone.utc)
            )
            self._users[name] = user
            return user

    def add_node(
        self,
        name: str,
        user: Optional[str] = None,
        advertised: Optional[List[str]] = None,
        enabled: Optional[List[str]] = None
    ) -> LiveNode:
        """Register a node with advertised (and optionally enabled) routes"""
        enabled_set = {normalize_prefix(p) for p in (enabled or [])}
        with self._lock:
            node = LiveNode(
                id=str(next(self._ids)), name=name, given_name=name, user=user,
                online=True, last_seen=datetime.now(timezone.utc)
            )
            self._nodes[node.id] = node
            for prefix in advertised or []:
                prefix = normalize_prefix(prefix)
                route_id = str(next(self._ids))
                self._routes[route_id] = LiveRoute(
                    id=route_id, node=name, prefix=prefix,
                    advertised=True, enabled=prefix in enabled_set
                )
            return node

    def fail(self, operation: str, target: str = "*", message: str = "simulated failure"):
        """Make the next and all later calls of operation on target raise"""
        self._failures[(operation, target)] = message

    def clear_failures(self):
        self._failures.clear()

    def _check(self, operation: str, target: str = "") -> None:
        if self.record:
            self.calls.append((operation, target))
        message = self._failures.get((operation, target)) or self._failures.get((operation, "*"))
        if message:
            raise ControlPlaneError(f"{operation} {target}".strip(), message)

    def _record(self, operation: str, target: str) -> None:
        if self.record:
            self.mutations.append((operation, target))
        logger.debug(f"memory control plane: {operation} {target}")

    # ==========================================================================
    # Users
    # ==========================================================================

    def list_users(self) -> List[LiveUser]:
        with self._lock:
            self._check("list_users")
            return list(self._users.values())

    def create_user(self, user: User) -> LiveUser:
        with self._lock:
            self._check("create_user", user.name)
            if user.name in self._users:
                raise ControlPlaneError(f"create user {user.name}", "user already exists", 409)
            live = LiveUser(
                id=str(next(self._ids)), name=user.name, email=user.email,
                created_at=datetime.now(timezone.utc)
            )
            self._users[user.name] = live
            self._record("create_user", user.name)
            return live

    def delete_user(self, name: str) -> None:
        with self._lock:
            self._check("delete_user", name)
            if name not in self._users:
                raise ControlPlaneError(f"delete user {name}", "user not found", 404)
            del self._users[name]
            self._record("delete_user", name)

    # ==========================================================================
    # Nodes
    # ==========================================================================

    def list_nodes(self) -> List[LiveNode]:
        with self._lock:
            self._check("list_nodes")
            return list(self._nodes.values())

    def delete_node(self, node_id: str) -> None:
        with self._lock:
            self._check("delete_node", node_id)
            node = self._nodes.pop(node_id, None)
            if node is None:
                raise ControlPlaneError(f"delete node {node_id}", "node not found", 404)
            self._routes = {
                rid: r for rid, r in self._routes.items() if r.node != node.given_name
            }
            self._record("delete_node", node_id)

    def expire_node(self, node_id: str) -> None:
        with self._lock:
            self._check("expire_node", node_id)
            node = self._nodes.get(node_id)
            if node is None:
                raise ControlPlaneError(f"expire node {node_id}", "node not found", 404)
            self._nodes[node_id] = node.model_copy(
                update={"expiry": datetime.now(timezone.utc)}
            )
            self._record("expire_node", node_id)

    # ==========================================================================
    # Routes
    # ==========================================================================

    def list_routes(self) -> List[LiveRoute]:
        with self._lock:
            self._check("list_routes")
            return list(self._routes.values())

    def _set_route(self, operation: str, route_id: str, enabled: bool) -> None:
        with self._lock:
            self._check(operation, route_id)
            route = self._routes.get(route_id)
            if route is None:
                raise ControlPlaneError(f"{operation} {route_id}", "route not found", 404)
            self._routes[route_id] = route.model_copy(update={"enabled": enabled})
            self._record(operation, route_id)

    def enable_route(self, route_id: str) -> None:
        self._set_route("enable_route", route_id, True)

    def disable_route(self, route_id: str) -> None:
        self._set_route("disable_route", route_id, False)

    # ==========================================================================
    # ACL Policy
    # ==========================================================================

    def get_policy(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._check("get_policy")
            return copy.deepcopy(self._policy)

    def set_policy(self, policy: ACLPolicy) -> None:
        with self._lock:
            self._check("set_policy")
            self._policy = policy.to_headscale()
            self._record("set_policy", "acl")

    # ==========================================================================
    # Pre-auth Keys
    # ==========================================================================

    def create_auth_key(
        self,
        user: str,
        ephemeral: bool,
        reusable: bool,
        expiration: datetime,
        tags: List[str]
    ) -> AuthKey:
        with self._lock:
            self._check("create_auth_key", user)
            if user not in self._users:
                raise ControlPlaneError(f"create auth key for {user}", "user not found", 404)
            key = AuthKey(
                id=str(next(self._ids)),
                key=generate_auth_key(),
                user=user,
                ephemeral=ephemeral,
                reusable=reusable,
                expiration=expiration,
                tags=list(tags),
                created_at=datetime.now(timezone.utc),
            )
            self._keys[key.key] = key
            self._record("create_auth_key", user)
            return key

    def list_auth_keys(self, user: str) -> List[AuthKey]:
        with self._lock:
            self._check("list_auth_keys", user)
            return [k for k in self._keys.values() if k.user == user]

    def expire_auth_key(self, user: str, key: str) -> None:
        with self._lock:
            self._check("expire_auth_key", user)
            existing = self._keys.get(key)
            if existing is None or existing.user != user:
                raise ControlPlaneError(f"expire auth key for {user}", "key not found", 404)
            self._keys[key] = existing.model_copy(
                update={"expiration": datetime.now(timezone.utc)}
            )
            self._record("expire_auth_key", user)
