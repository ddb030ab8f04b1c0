# orchestrator/clients/headscale.py
"""
Headscale API Client
Handles communication with the Headscale REST API (/api/v1)
"""

import json
import re
import socket
import logging
import http.client
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from urllib.request import Request, urlopen
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode

from orchestrator.config import settings
from orchestrator.core.exceptions import ControlPlaneError
from orchestrator.schemas.state import User, ACLPolicy
from orchestrator.schemas.live import LiveUser, LiveNode, LiveRoute
from orchestrator.schemas.keys import AuthKey
from .base import ControlPlane

logger = logging.getLogger(__name__)

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a Headscale RFC 3339 timestamp
    Headscale emits nanosecond precision; datetime keeps microseconds.
    """
    if not value:
        return None
    value = _FRACTION_RE.sub(r"\1", value.strip())
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Unparseable timestamp from Headscale: {value}")
        return None


def format_timestamp(value: datetime) -> str:
    """Format a datetime as RFC 3339 UTC"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _user_name(value: Any) -> Optional[str]:
    """Headscale returns the user as a name or as a nested object"""
    if isinstance(value, dict):
        return value.get("name")
    return value


class HeadscaleClient(ControlPlane):
    """
    HTTP Client for the Headscale API

    Features:
    - Bearer API key authentication
    - Per-request timeout
    - Uniform ControlPlaneError on any failure
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None
    ):
        self.base_url = (base_url or settings.HEADSCALE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.HEADSCALE_API_KEY
        self.timeout = timeout or settings.HEADSCALE_TIMEOUT
        self.api_prefix = "/api/v1"
        logger.info(f"Headscale client initialized: {self.base_url}")

    def _make_request(
        self,
        operation: str,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """Make HTTP request to Headscale"""
        url = f"{self.base_url}{self.api_prefix}{endpoint}"
        if params:
            url = f"{url}?{urlencode(params)}"

        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "User-Agent": f"headscale-orchestrator/{settings.APP_VERSION}"
        }

        body = None
        if data is not None:
            body = json.dumps(data).encode("utf-8")
            headers["Content-Type"] = "application/json"

        request = Request(
            url=url,
            data=body,
            headers=headers,
            method=method
        )

        try:
            logger.debug(f"{method} {url}")
            with urlopen(request, timeout=self.timeout) as response:
                response_data = response.read().decode("utf-8")
                return json.loads(response_data) if response_data else {}

        except HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            message = error_body
            try:
                message = json.loads(error_body).get("message", error_body)
            except (ValueError, AttributeError):
                pass
            logger.error(f"{operation}: HTTP {e.code}: {message}")
            raise ControlPlaneError(operation, message or str(e.reason), e.code)

        except URLError as e:
            logger.error(f"{operation}: connection error: {e.reason}")
            raise ControlPlaneError(operation, f"cannot reach Headscale: {e.reason}")

        except socket.timeout:
            logger.error(f"{operation}: request timed out")
            raise ControlPlaneError(operation, "request to Headscale timed out")

        except (http.client.HTTPException, OSError) as e:
            logger.error(f"{operation}: connection failed: {e}")
            raise ControlPlaneError(operation, f"connection to Headscale failed: {e}")

        except ValueError as e:
            raise ControlPlaneError(operation, f"invalid JSON from Headscale: {e}")

    # ==========================================================================
    # Users
    # ==========================================================================

    def list_users(self) -> List[LiveUser]:
        response = self._make_request("list users", "GET", "/user")
        return [self._to_user(u) for u in response.get("users", [])]

    def create_user(self, user: User) -> LiveUser:
        data = {"name": user.name}
        if user.email:
            data["email"] = user.email
        response = self._make_request(f"create user {user.name}", "POST", "/user", data)
        return self._to_user(response.get("user", {"id": "", "name": user.name}))

    def delete_user(self, name: str) -> None:
        match = next((u for u in self.list_users() if u.name == name), None)
        if match is None:
            raise ControlPlaneError(f"delete user {name}", "user not found", 404)
        self._make_request(f"delete user {name}", "DELETE", f"/user/{quote(match.id, safe='')}")

    @staticmethod
    def _to_user(data: Dict[str, Any]) -> LiveUser:
        return LiveUser(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            email=data.get("email") or None,
            created_at=parse_timestamp(data.get("createdAt")),
        )

    # ==========================================================================
    # Nodes
    # ==========================================================================

    def list_nodes(self) -> List[LiveNode]:
        response = self._make_request("list nodes", "GET", "/node")
        return [
            LiveNode(
                id=str(n.get("id", "")),
                name=n.get("name", ""),
                given_name=n.get("givenName") or None,
                user=_user_name(n.get("user")),
                ip_addresses=n.get("ipAddresses") or [],
                online=bool(n.get("online", False)),
                last_seen=parse_timestamp(n.get("lastSeen")),
                expiry=parse_timestamp(n.get("expiry")),
                tags=(n.get("forcedTags") or []) + (n.get("validTags") or []),
            )
            for n in response.get("nodes", [])
        ]

    def delete_node(self, node_id: str) -> None:
        self._make_request(f"delete node {node_id}", "DELETE", f"/node/{quote(node_id, safe='')}")

    def expire_node(self, node_id: str) -> None:
        self._make_request(f"expire node {node_id}", "POST", f"/node/{quote(node_id, safe='')}/expire")

    # ==========================================================================
    # Routes
    # ==========================================================================

    def list_routes(self) -> List[LiveRoute]:
        response = self._make_request("list routes", "GET", "/routes")
        routes = []
        for r in response.get("routes", []):
            node = r.get("node") or {}
            routes.append(LiveRoute(
                id=str(r.get("id", "")),
                node=node.get("givenName") or node.get("name", ""),
                prefix=r.get("prefix", ""),
                advertised=bool(r.get("advertised", False)),
                enabled=bool(r.get("enabled", False)),
                is_primary=bool(r.get("isPrimary", False)),
            ))
        return routes

    def enable_route(self, route_id: str) -> None:
        self._make_request(f"enable route {route_id}", "POST", f"/routes/{quote(route_id, safe='')}/enable")

    def disable_route(self, route_id: str) -> None:
        self._make_request(f"disable route {route_id}", "POST", f"/routes/{quote(route_id, safe='')}/disable")

    # ==========================================================================
    # ACL Policy
    # ==========================================================================

    def get_policy(self) -> Optional[Dict[str, Any]]:
        """
        Live policy as a document

        Returns None if Headscale has no policy or it is not plain JSON
        (HuJSON with comments cannot be compared and is treated as unknown)
        """
        response = self._make_request("get ACL policy", "GET", "/policy")
        raw = response.get("policy")
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Live ACL policy is not plain JSON, treating as unknown")
            return None

    def set_policy(self, policy: ACLPolicy) -> None:
        data = {"policy": json.dumps(policy.to_headscale(), indent=2)}
        self._make_request("update ACL policy", "PUT", "/policy", data)

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
        data = {
            "user": user,
            "reusable": reusable,
            "ephemeral": ephemeral,
            "expiration": format_timestamp(expiration),
            "aclTags": list(tags),
        }
        response = self._make_request(f"create auth key for {user}", "POST", "/preauthkey", data)
        key = response.get("preAuthKey")
        if not key or not key.get("key"):
            raise ControlPlaneError(f"create auth key for {user}", "response did not contain a key")
        return self._to_auth_key(key, user)

    def list_auth_keys(self, user: str) -> List[AuthKey]:
        response = self._make_request(
            f"list auth keys for {user}", "GET", "/preauthkey", params={"user": user}
        )
        return [self._to_auth_key(k, user) for k in response.get("preAuthKeys", [])]

    def expire_auth_key(self, user: str, key: str) -> None:
        self._make_request(
            f"expire auth key for {user}", "POST", "/preauthkey/expire",
            {"user": user, "key": key}
        )

    @staticmethod
    def _to_auth_key(data: Dict[str, Any], user: str) -> AuthKey:
        return AuthKey(
            id=str(data["id"]) if data.get("id") is not None else None,
            key=data.get("key", ""),
            user=_user_name(data.get("user")) or user,
            ephemeral=bool(data.get("ephemeral", False)),
            reusable=bool(data.get("reusable", False)),
            used=bool(data.get("used", False)),
            expiration=parse_timestamp(data.get("expiration")) or datetime.now(timezone.utc),
            tags=data.get("aclTags") or [],
            created_at=parse_timestamp(data.get("createdAt")),
        )
