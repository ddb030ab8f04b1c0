# orchestrator/clients/base.py
"""
Control-plane adapter interface

Everything the orchestrator needs from Headscale goes through this
interface. Implementations:
    - HeadscaleClient: REST API of a running Headscale server
    - InMemoryControlPlane: in-process state for tests and local development

All implementations raise ControlPlaneError when a call fails.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from orchestrator.schemas.state import User, ACLPolicy
from orchestrator.schemas.live import LiveUser, LiveNode, LiveRoute
from orchestrator.schemas.keys import AuthKey

logger = logging.getLogger(__name__)


class ControlPlane(ABC):
    """Operations the orchestrator performs against the control plane"""

    # === Users ===

    @abstractmethod
    def list_users(self) -> List[LiveUser]:
        ...

    @abstractmethod
    def create_user(self, user: User) -> LiveUser:
        ...

    @abstractmethod
    def delete_user(self, name: str) -> None:
        ...

    # === Nodes ===

    @abstractmethod
    def list_nodes(self) -> List[LiveNode]:
        ...

    @abstractmethod
    def delete_node(self, node_id: str) -> None:
        ...

    @abstractmethod
    def expire_node(self, node_id: str) -> None:
        ...

    # === Routes ===

    @abstractmethod
    def list_routes(self) -> List[LiveRoute]:
        ...

    @abstractmethod
    def enable_route(self, route_id: str) -> None:
        ...

    @abstractmethod
    def disable_route(self, route_id: str) -> None:
        ...

    # === ACL Policy ===

    @abstractmethod
    def get_policy(self) -> Optional[Dict[str, Any]]:
        """Live policy document, None if no policy is set"""
        ...

    @abstractmethod
    def set_policy(self, policy: ACLPolicy) -> None:
        ...

    # === Pre-auth Keys ===

    @abstractmethod
    def create_auth_key(
        self,
        user: str,
        ephemeral: bool,
        reusable: bool,
        expiration: datetime,
        tags: List[str]
    ) -> AuthKey:
        ...

    @abstractmethod
    def list_auth_keys(self, user: str) -> List[AuthKey]:
        ...

    @abstractmethod
    def expire_auth_key(self, user: str, key: str) -> None:
        ...

    def ping(self) -> bool:
        """Check the control plane is reachable"""
        try:
            self.list_users()
            return True
        except Exception as e:
            logger.error(f"Control plane health check failed: {e}")
            return False
