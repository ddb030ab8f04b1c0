# orchestrator/api/deps.py
"""
FastAPI dependencies
Authentication and providers for the core services
"""

import secrets
import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from orchestrator.config import settings
from orchestrator.clients import ControlPlane, create_control_plane
from orchestrator.core.auth_keys import AuthKeyIssuer
from orchestrator.core.drift import DriftDetector
from orchestrator.core.loader import DesiredStateLoader
from orchestrator.core.metrics import MetricsSink
from orchestrator.core.reconciler import Reconciler
from orchestrator.core.validator import PolicyValidator

logger = logging.getLogger(__name__)


# === Authentication Dependency ===

async def verify_api_token(authorization: Optional[str] = Header(None)):
    """
    Verify the static bearer credential
    Expects "Authorization: Bearer <API_TOKEN>"
    """
    expected = settings.api_token
    scheme, _, token = (authorization or "").partition(" ")

    if (
        not expected
        or scheme.lower() != "bearer"
        or not secrets.compare_digest(token.strip().encode("utf-8"), expected.encode("utf-8"))
    ):
        logger.warning("Invalid API token attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "Unauthorized",
                "error_code": "UNAUTHORIZED"
            },
            headers={"WWW-Authenticate": "Bearer"}
        )
    return True


# === Service Providers ===

@lru_cache()
def get_metrics() -> MetricsSink:
    """Process metrics sink shared by /metrics and the core services"""
    return MetricsSink()


@lru_cache()
def get_control_plane() -> ControlPlane:
    return create_control_plane(settings)


def get_loader() -> DesiredStateLoader:
    return DesiredStateLoader(settings.DATA_PATH)


def get_validator() -> PolicyValidator:
    return PolicyValidator()


@lru_cache()
def get_reconciler() -> Reconciler:
    """One reconciler per process so its single-flight guard covers every request"""
    return Reconciler(metrics=get_metrics())


def get_drift_detector(metrics: MetricsSink = Depends(get_metrics)) -> DriftDetector:
    return DriftDetector(metrics=metrics)


def get_auth_key_issuer(metrics: MetricsSink = Depends(get_metrics)) -> AuthKeyIssuer:
    return AuthKeyIssuer(metrics=metrics)
