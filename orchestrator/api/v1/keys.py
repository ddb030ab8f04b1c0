# orchestrator/api/v1/keys.py
"""
Pre-auth Key Endpoints
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, status

from orchestrator.clients import ControlPlane
from orchestrator.core.auth_keys import AuthKeyIssuer
from orchestrator.schemas.base import ErrorResponse, MessageResponse
from orchestrator.schemas.keys import AuthKey, AuthKeyRequest
from orchestrator.api.deps import get_auth_key_issuer, get_control_plane

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/keys",
    response_model=AuthKey,
    status_code=status.HTTP_200_OK,
    responses={500: {"description": "Headscale rejected the request", "model": ErrorResponse}},
    summary="Issue pre-auth key",
    description="Create a pre-auth key for a user; expiration defaults to 24h"
)
def create_auth_key(
    request: AuthKeyRequest,
    control_plane: ControlPlane = Depends(get_control_plane),
    issuer: AuthKeyIssuer = Depends(get_auth_key_issuer)
):
    return issuer.issue_request(control_plane, request)


@router.get(
    "/keys",
    response_model=List[AuthKey],
    summary="List pre-auth keys",
    description="Pre-auth keys issued for a user"
)
def list_auth_keys(
    user: str = Query(..., min_length=1, description="Owning user"),
    control_plane: ControlPlane = Depends(get_control_plane),
    issuer: AuthKeyIssuer = Depends(get_auth_key_issuer)
):
    return issuer.list_keys(control_plane, user)


@router.delete(
    "/keys/{key}",
    response_model=MessageResponse,
    summary="Revoke pre-auth key",
    description="Expire a pre-auth key immediately"
)
def revoke_auth_key(
    key: str,
    user: str = Query(..., min_length=1, description="Owning user"),
    control_plane: ControlPlane = Depends(get_control_plane),
    issuer: AuthKeyIssuer = Depends(get_auth_key_issuer)
):
    issuer.revoke(control_plane, user, key)
    return MessageResponse(message=f"Auth key {key} revoked")
