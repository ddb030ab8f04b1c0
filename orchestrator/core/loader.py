# orchestrator/core/loader.py
"""
Desired-State Loader
Reads users, routes and the ACL policy from YAML documents in the data directory
"""

import os
import tempfile
import logging
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml
from pydantic import ValidationError

from orchestrator.config import settings
from orchestrator.schemas.state import User, Route, ACLPolicy, DesiredState
from .exceptions import LoadError

logger = logging.getLogger(__name__)


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error["loc"])
        parts.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return "; ".join(parts)


class DesiredStateLoader:
    """
    Loads the three desired-state documents

    Each document is parsed on its own. Unknown keys are ignored,
    missing required keys fail the load.
    """

    def __init__(
        self,
        data_path: Union[str, Path, None] = None,
        users_file: Optional[str] = None,
        routes_file: Optional[str] = None,
        acl_file: Optional[str] = None
    ):
        self.data_path = Path(data_path or settings.DATA_PATH)
        self.users_path = self.data_path / (users_file or settings.USERS_FILE)
        self.routes_path = self.data_path / (routes_file or settings.ROUTES_FILE)
        self.acl_path = self.data_path / (acl_file or settings.ACL_FILE)

    def _read(self, document: str, path: Path) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f)
        except FileNotFoundError:
            raise LoadError(document, str(path), "file not found")
        except yaml.YAMLError as e:
            raise LoadError(document, str(path), f"invalid YAML: {e}")
        except OSError as e:
            raise LoadError(document, str(path), str(e))

    def _read_list(self, document: str, path: Path) -> List[Any]:
        data = self._read(document, path)
        if data is None:
            return []
        if not isinstance(data, list):
            raise LoadError(
                document, str(path),
                f"expected a list, got {type(data).__name__}"
            )
        return data

    def load_users(self) -> List[User]:
        """Load users.yaml"""
        items = self._read_list("users", self.users_path)
        try:
            users = [User.model_validate(item) for item in items]
        except ValidationError as e:
            raise LoadError("users", str(self.users_path), _format_validation_error(e))

        logger.debug(f"Loaded {len(users)} users from {self.users_path}")
        return users

    def load_routes(self) -> List[Route]:
        """Load routes.yaml"""
        items = self._read_list("routes", self.routes_path)
        try:
            routes = [Route.model_validate(item) for item in items]
        except ValidationError as e:
            raise LoadError("routes", str(self.routes_path), _format_validation_error(e))

        logger.debug(f"Loaded {len(routes)} route entries from {self.routes_path}")
        return routes

    def load_acl(self) -> ACLPolicy:
        """Load acls.yaml"""
        data = self._read("ACL", self.acl_path)
        if data is None:
            return ACLPolicy()
        if not isinstance(data, dict):
            raise LoadError(
                "ACL", str(self.acl_path),
                f"expected a mapping, got {type(data).__name__}"
            )
        try:
            policy = ACLPolicy.model_validate(data)
        except ValidationError as e:
            raise LoadError("ACL", str(self.acl_path), _format_validation_error(e))

        logger.debug(
            f"Loaded ACL policy with {len(policy.acls)} rules "
            f"and {len(policy.ssh)} SSH rules from {self.acl_path}"
        )
        return policy

    def load(self) -> DesiredState:
        """
        Load all three documents into one snapshot

        Raises:
            LoadError: If any document is missing or malformed
        """
        return DesiredState(
            users=tuple(self.load_users()),
            routes=tuple(self.load_routes()),
            policy=self.load_acl(),
        )

    def save_acl(self, policy: ACLPolicy) -> None:
        """
        Replace acls.yaml atomically
        Temp file must share the target's directory for os.replace
        """
        self.data_path.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.data_path), prefix=".acls-", suffix=".yaml"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(
                    policy.to_document(), f,
                    sort_keys=False, default_flow_style=False
                )
            os.replace(tmp_path, self.acl_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.info(f"ACL policy written to {self.acl_path}")

    def storage_accessible(self) -> bool:
        """Check the data directory exists and is readable"""
        return self.data_path.is_dir() and os.access(self.data_path, os.R_OK)
