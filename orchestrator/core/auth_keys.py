# orchestrator/core/auth_keys.py
"""
Auth-Key Issuer
Creates pre-authentication keys scoped to a user

Expiration is given as a Go-style duration string ("24h", "1h30m", "90s").
A missing, malformed or non-positive duration falls back to the default
expiration instead of failing the request.
"""

import re
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, TYPE_CHECKING

from orchestrator.config import settings
from orchestrator.schemas.keys import AuthKey, AuthKeyRequest
from .metrics import MetricsSink, AUTH_KEYS_ISSUED_TOTAL

if TYPE_CHECKING:
    from orchestrator.clients.base import ControlPlane

logger = logging.getLogger(__name__)

AUTH_KEY_PREFIX = "hskey_"

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT_RE = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

# Go durations are int64 nanoseconds, roughly 2562047h
MAX_DURATION_SECONDS = (2 ** 63 - 1) / 1e9


def parse_duration(value: Optional[str]) -> Optional[timedelta]:
    """
    Parse a Go time.ParseDuration string

    Returns:
        timedelta, or None if value is empty or not a valid duration
    """
    if not value:
        return None

    text = value.strip()
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text:
        return None

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _COMPONENT_RE.match(text, pos)
        if not match:
            return None
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    if total > MAX_DURATION_SECONDS:
        return None

    return timedelta(seconds=sign * total)


def generate_auth_key() -> str:
    """New pre-auth key token from the OS CSPRNG (48 hex chars)"""
    return AUTH_KEY_PREFIX + secrets.token_hex(24)


class AuthKeyIssuer:
    """
    Issues, lists and revokes pre-auth keys

    Key lifecycle after issuance belongs to the control plane.
    """

    def __init__(
        self,
        metrics: Optional[MetricsSink] = None,
        default_expiration: Optional[timedelta] = None
    ):
        self.metrics = metrics or MetricsSink()
        self.default_expiration = default_expiration or timedelta(
            hours=settings.AUTH_KEY_DEFAULT_EXPIRATION_HOURS
        )

    def resolve_expiration(
        self,
        duration: Optional[str],
        now: Optional[datetime] = None
    ) -> datetime:
        """Absolute expiration for a duration string, default on bad input"""
        now = now or datetime.now(timezone.utc)
        parsed = parse_duration(duration)
        if parsed is None or parsed <= timedelta(0):
            if duration:
                logger.warning(
                    f"Invalid key expiration '{duration}', using default {self.default_expiration}"
                )
            parsed = self.default_expiration

        try:
            return now + parsed
        except OverflowError:
            logger.warning(
                f"Key expiration '{duration}' is out of range, using default {self.default_expiration}"
            )
            return now + self.default_expiration

    def issue(
        self,
        control_plane: "ControlPlane",
        user: str,
        ephemeral: bool = False,
        reusable: bool = False,
        expiration: Optional[str] = None,
        tags: Optional[List[str]] = None,
        now: Optional[datetime] = None
    ) -> AuthKey:
        """
        Issue a pre-auth key for user

        Raises:
            ControlPlaneError: If the control plane rejects the request
        """
        expires_at = self.resolve_expiration(expiration, now)
        try:
            key = control_plane.create_auth_key(
                user=user,
                ephemeral=ephemeral,
                reusable=reusable,
                expiration=expires_at,
                tags=list(tags or []),
            )
        except Exception:
            self.metrics.inc(AUTH_KEYS_ISSUED_TOTAL, {"status": "error"})
            raise

        self.metrics.inc(AUTH_KEYS_ISSUED_TOTAL, {"status": "success"})
        logger.info(
            f"Issued auth key for {user} "
            f"(ephemeral={ephemeral}, reusable={reusable}, expires={expires_at.isoformat()})"
        )
        return key

    def issue_request(
        self,
        control_plane: "ControlPlane",
        request: AuthKeyRequest,
        now: Optional[datetime] = None
    ) -> AuthKey:
        return self.issue(
            control_plane,
            user=request.user,
            ephemeral=request.ephemeral,
            reusable=request.reusable,
            expiration=request.expiration,
            tags=request.tags,
            now=now,
        )

    def list_keys(self, control_plane: "ControlPlane", user: str) -> List[AuthKey]:
        return control_plane.list_auth_keys(user)

    def revoke(self, control_plane: "ControlPlane", user: str, key: str) -> None:
        control_plane.expire_auth_key(user, key)
        logger.info(f"Expired auth key for {user}")
