# orchestrator/core/validator.py
"""
Desired-State Validator

Checks that the documents are well-formed and that the ACL policy is
self-consistent: every group, tag, autogroup and host referenced by an
ACL or SSH rule must be declared in the policy itself.
"""

import ipaddress
import logging
import re
from typing import List, Optional, Set

from orchestrator.schemas.state import DesiredState, ACLPolicy, normalize_prefix
from orchestrator.schemas.results import ValidationResult
from .exceptions import LoadError
from .loader import DesiredStateLoader

logger = logging.getLogger(__name__)

ACL_ACTIONS = {"accept", "deny"}
SSH_ACTIONS = {"accept", "check"}

# Provided by Headscale without declaration
BUILTIN_AUTOGROUPS = {"member", "self", "tagged", "internet", "nonroot", "danger-all"}

# "*", "22", "80,443", "8000-8100"
PORTS_RE = re.compile(r"^(\*|\d+(-\d+)?(,\d+(-\d+)?)*)$")


def _is_ip_or_network(value: str) -> bool:
    try:
        ipaddress.ip_network(value, strict=False)
        return True
    except ValueError:
        return False


def _strip_ports(destination: str) -> str:
    """
    Drop the port list from an ACL destination
    "tag:web:80,443" -> "tag:web", "*:*" -> "*"
    """
    if ":" not in destination:
        return destination
    head, ports = destination.rsplit(":", 1)
    if PORTS_RE.match(ports):
        return head
    return destination


class PolicyValidator:
    """
    Validates desired state before it is pushed

    Usage:
        result = PolicyValidator().validate(desired)
        if not result.valid: ...
    """

    def validate(self, desired: DesiredState) -> ValidationResult:
        """Run all checks against a loaded snapshot"""
        errors: List[str] = []

        user_names = self._check_users(desired, errors)
        self._check_routes(desired, errors)
        self._check_policy(desired.policy, user_names, errors)

        errors = list(dict.fromkeys(errors))
        if errors:
            logger.info(f"Desired state invalid: {len(errors)} problem(s)")
            return ValidationResult(valid=False, message="; ".join(errors), errors=errors)

        return ValidationResult(valid=True, message="Configuration is valid")

    def validate_store(self, loader: DesiredStateLoader) -> ValidationResult:
        """Load and validate; load failures count as invalid configuration"""
        try:
            desired = loader.load()
        except LoadError as e:
            return ValidationResult(valid=False, message=str(e), errors=[str(e)])
        return self.validate(desired)

    def validate_policy(
        self,
        policy: ACLPolicy,
        user_names: Optional[Set[str]] = None
    ) -> ValidationResult:
        """Validate a policy on its own, e.g. before replacing acls.yaml"""
        errors: List[str] = []
        self._check_policy(policy, user_names or set(), errors)
        errors = list(dict.fromkeys(errors))
        if errors:
            return ValidationResult(valid=False, message="; ".join(errors), errors=errors)
        return ValidationResult(valid=True, message="Policy is valid")

    # ==========================================================================
    # Checks
    # ==========================================================================

    def _check_users(self, desired: DesiredState, errors: List[str]) -> Set[str]:
        seen: Set[str] = set()
        for user in desired.users:
            if user.name in seen:
                errors.append(f"duplicate user: {user.name}")
            seen.add(user.name)
        return seen

    def _check_routes(self, desired: DesiredState, errors: List[str]) -> None:
        for route in desired.routes:
            for prefix in route.routes:
                try:
                    normalize_prefix(prefix)
                except ValueError:
                    errors.append(f"invalid route prefix for node {route.node}: {prefix}")

    def _check_policy(
        self,
        policy: ACLPolicy,
        user_names: Set[str],
        errors: List[str]
    ) -> None:
        for alias, address in policy.hosts.items():
            if not _is_ip_or_network(address):
                errors.append(f"invalid host address for {alias}: {address}")

        for tag, owners in policy.tag_owners.items():
            if not tag.startswith("tag:"):
                errors.append(f"tagOwners key must start with 'tag:': {tag}")
            for owner in owners:
                if owner.startswith("group:") and owner not in policy.groups:
                    errors.append(f"undefined group reference: {owner}")

        for index, rule in enumerate(policy.acls, start=1):
            if rule.action not in ACL_ACTIONS:
                errors.append(f"invalid action in ACL rule {index}: {rule.action}")
            for source in rule.src:
                self._check_selector(source, policy, user_names, errors)
            for destination in rule.dst:
                self._check_selector(_strip_ports(destination), policy, user_names, errors)

        for index, rule in enumerate(policy.ssh, start=1):
            if rule.action not in SSH_ACTIONS:
                errors.append(f"invalid action in SSH rule {index}: {rule.action}")
            for selector in list(rule.src) + list(rule.dst):
                self._check_selector(selector, policy, user_names, errors)

    def _check_selector(
        self,
        selector: str,
        policy: ACLPolicy,
        user_names: Set[str],
        errors: List[str]
    ) -> None:
        if selector == "*" or _is_ip_or_network(selector):
            return

        if selector.startswith("group:"):
            if selector not in policy.groups:
                errors.append(f"undefined group reference: {selector}")
            return

        if selector.startswith("tag:"):
            if selector not in policy.tag_owners:
                errors.append(f"undefined tag reference: {selector}")
            return

        if selector.startswith("autogroup:"):
            name = selector.split(":", 1)[1]
            if (
                name not in BUILTIN_AUTOGROUPS
                and selector not in policy.auto_groups
                and name not in policy.auto_groups
            ):
                errors.append(f"undefined autogroup reference: {selector}")
            return

        # user identities: "alice@" or "alice@example.com"
        if "@" in selector:
            return

        if selector in policy.hosts or selector in user_names:
            return

        errors.append(f"undefined host reference: {selector}")
