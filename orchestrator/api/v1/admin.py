# orchestrator/api/v1/admin.py
"""
Entity Management Endpoints
Direct access to live users, nodes and routes, and to the desired ACL policy
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, status

from orchestrator.clients import ControlPlane
from orchestrator.core.exceptions import ConfigValidationError, LoadError
from orchestrator.core.loader import DesiredStateLoader
from orchestrator.core.reconciler import Reconciler, RoutesStep
from orchestrator.core.validator import PolicyValidator
from orchestrator.schemas.base import ErrorResponse, MessageResponse
from orchestrator.schemas.live import LiveUser, LiveNode, LiveRoute
from orchestrator.schemas.results import ApplyResult
from orchestrator.schemas.state import User, Route, ACLPolicy, DesiredState
from orchestrator.api.deps import get_control_plane, get_loader, get_reconciler, get_validator

logger = logging.getLogger(__name__)

router = APIRouter()


# === Users ===

@router.get(
    "/users",
    response_model=List[LiveUser],
    summary="List users",
    description="Users registered in Headscale"
)
def list_users(control_plane: ControlPlane = Depends(get_control_plane)):
    return control_plane.list_users()


@router.post(
    "/users",
    response_model=LiveUser,
    status_code=status.HTTP_201_CREATED,
    responses={500: {"description": "Headscale rejected the user", "model": ErrorResponse}},
    summary="Create user"
)
def create_user(user: User, control_plane: ControlPlane = Depends(get_control_plane)):
    created = control_plane.create_user(user)
    logger.info(f"User {user.name} created via API")
    return created


@router.delete(
    "/users/{name}",
    response_model=MessageResponse,
    responses={404: {"description": "User not found", "model": ErrorResponse}},
    summary="Delete user"
)
def delete_user(name: str, control_plane: ControlPlane = Depends(get_control_plane)):
    control_plane.delete_user(name)
    logger.info(f"User {name} deleted via API")
    return MessageResponse(message=f"User {name} deleted")


# === Nodes ===

@router.get(
    "/nodes",
    response_model=List[LiveNode],
    summary="List nodes"
)
def list_nodes(control_plane: ControlPlane = Depends(get_control_plane)):
    return control_plane.list_nodes()


@router.delete(
    "/nodes/{node_id}",
    response_model=MessageResponse,
    responses={404: {"description": "Node not found", "model": ErrorResponse}},
    summary="Delete node"
)
def delete_node(node_id: str, control_plane: ControlPlane = Depends(get_control_plane)):
    control_plane.delete_node(node_id)
    logger.info(f"Node {node_id} deleted via API")
    return MessageResponse(message=f"Node {node_id} deleted")


@router.post(
    "/nodes/{node_id}/expire",
    response_model=MessageResponse,
    responses={404: {"description": "Node not found", "model": ErrorResponse}},
    summary="Expire node",
    description="Expire the node key, forcing re-authentication"
)
def expire_node(node_id: str, control_plane: ControlPlane = Depends(get_control_plane)):
    control_plane.expire_node(node_id)
    logger.info(f"Node {node_id} expired via API")
    return MessageResponse(message=f"Node {node_id} expired")


# === Routes ===

@router.get(
    "/routes",
    response_model=List[LiveRoute],
    summary="List routes",
    description="Routes advertised by nodes, with their enabled state"
)
def list_routes(control_plane: ControlPlane = Depends(get_control_plane)):
    return control_plane.list_routes()


@router.post(
    "/routes",
    response_model=ApplyResult,
    summary="Enable routes",
    description="Enable the given prefixes on a node, same rules as an apply",
    responses={
        409: {"description": "Apply already running", "model": ErrorResponse},
    },
)
def enable_routes(
    route: Route,
    control_plane: ControlPlane = Depends(get_control_plane),
    reconciler: Reconciler = Depends(get_reconciler),
):
    desired = DesiredState(users=(), routes=(route,), policy=ACLPolicy())
    with reconciler.exclusive():
        step = RoutesStep().run(desired, control_plane, dry_run=False)

    return ApplyResult(
        success=not step.errors,
        message=f"Applied {len(step.changes)} changes with {len(step.errors)} errors",
        changes=step.changes,
        errors=step.errors,
        dry_run=False,
        stats={
            "routes_processed": step.considered,
            "changes_applied": len(step.changes),
            "unchanged_count": step.unchanged,
            "errors_count": len(step.errors),
        },
    )


@router.delete(
    "/routes/{route_id}",
    response_model=MessageResponse,
    responses={404: {"description": "Route not found", "model": ErrorResponse}},
    summary="Disable route"
)
def disable_route(route_id: str, control_plane: ControlPlane = Depends(get_control_plane)):
    control_plane.disable_route(route_id)
    logger.info(f"Route {route_id} disabled via API")
    return MessageResponse(message=f"Route {route_id} disabled")


# === ACL Policy ===

@router.get(
    "/acl",
    response_model=ACLPolicy,
    responses={500: {"description": "acls.yaml could not be loaded", "model": ErrorResponse}},
    summary="Get ACL policy",
    description="Desired ACL policy from the data directory"
)
def get_acl(loader: DesiredStateLoader = Depends(get_loader)):
    return loader.load_acl()


@router.put(
    "/acl",
    response_model=MessageResponse,
    responses={400: {"description": "Policy failed validation", "model": ErrorResponse}},
    summary="Replace ACL policy",
    description="Validate and write the desired ACL policy; applied on the next apply"
)
def update_acl(
    policy: ACLPolicy,
    loader: DesiredStateLoader = Depends(get_loader),
    validator: PolicyValidator = Depends(get_validator)
):
    try:
        user_names = {u.name for u in loader.load_users()}
    except LoadError as e:
        logger.warning(f"Validating ACL without user names: {e}")
        user_names = set()

    result = validator.validate_policy(policy, user_names)
    if not result.valid:
        raise ConfigValidationError(result.errors)

    loader.save_acl(policy)
    return MessageResponse(message="ACL updated successfully")
