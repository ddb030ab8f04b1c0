# orchestrator/api/v1/reconcile.py
"""
Reconciliation API Endpoints
Apply desired state, detect drift, validate configuration, report status

Handlers that call the control plane are plain functions so FastAPI runs
them in its threadpool instead of on the event loop.
"""

import time
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orchestrator.config import settings
from orchestrator.clients import ControlPlane
from orchestrator.core.audit import run_history
from orchestrator.core.drift import DriftDetector
from orchestrator.core.loader import DesiredStateLoader
from orchestrator.core.reconciler import Reconciler, ApplyOptions
from orchestrator.core.validator import PolicyValidator
from orchestrator.database.models import RunOperation
from orchestrator.database.session import get_db, db_manager
from orchestrator.schemas.base import ErrorResponse, utcnow
from orchestrator.schemas.results import (
    ApplyRequest,
    ApplyResult,
    DriftReport,
    ValidationResult,
    RunResponse,
)
from orchestrator.api.deps import (
    get_control_plane,
    get_drift_detector,
    get_loader,
    get_reconciler,
    get_validator,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Set by the application lifespan
startup_time = None


def _to_run_response(run) -> RunResponse:
    return RunResponse(
        id=run.id,
        operation=run.operation,
        dry_run=run.dry_run,
        success=run.success,
        message=run.message,
        changes_count=run.changes_count,
        errors_count=run.errors_count,
        details=run_history.details_of(run),
        started_at=run.started_at,
        duration_ms=run.duration_ms,
    )


@router.post(
    "/apply",
    response_model=ApplyResult,
    responses={
        409: {"description": "Apply already running", "model": ErrorResponse},
        500: {"description": "Desired state could not be loaded", "model": ErrorResponse},
    },
    summary="Apply desired state",
    description="Push users, routes and ACL policy from the data directory to Headscale"
)
def apply_config(
    request: ApplyRequest,
    loader: DesiredStateLoader = Depends(get_loader),
    control_plane: ControlPlane = Depends(get_control_plane),
    reconciler: Reconciler = Depends(get_reconciler),
    db: Session = Depends(get_db)
):
    """Reconcile desired state onto the control plane"""
    options = ApplyOptions(
        dry_run=request.dry_run,
        force=request.force,
        validate=request.validate_first,
    )

    started_at = utcnow()
    started = time.monotonic()
    result = reconciler.reconcile(loader, control_plane, options)
    duration_ms = (time.monotonic() - started) * 1000

    if settings.ENABLE_AUDIT_LOG:
        run_history.record_apply(db, result, started_at, duration_ms)

    return result


@router.get(
    "/drift",
    response_model=DriftReport,
    responses={500: {"description": "Load or Headscale failure", "model": ErrorResponse}},
    summary="Detect drift",
    description="Compare desired users and routes with Headscale without changing anything"
)
def check_drift(
    loader: DesiredStateLoader = Depends(get_loader),
    control_plane: ControlPlane = Depends(get_control_plane),
    detector: DriftDetector = Depends(get_drift_detector),
    db: Session = Depends(get_db)
):
    """Report drift between config and Headscale"""
    started_at = utcnow()
    started = time.monotonic()
    report = detector.check(loader, control_plane)
    duration_ms = (time.monotonic() - started) * 1000

    if settings.ENABLE_AUDIT_LOG:
        run_history.record_drift(db, report, started_at, duration_ms)

    return report


@router.get(
    "/validate",
    response_model=ValidationResult,
    summary="Validate desired state",
    description="Check the documents parse and the ACL policy only references defined groups, tags and hosts"
)
def validate_config(
    loader: DesiredStateLoader = Depends(get_loader),
    validator: PolicyValidator = Depends(get_validator)
):
    """Validate configuration in the data directory"""
    return validator.validate_store(loader)


@router.get(
    "/runs",
    response_model=List[RunResponse],
    summary="Run history",
    description="Most recent apply and drift runs"
)
def list_runs(
    operation: Optional[RunOperation] = Query(None, description="Filter by operation"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    runs = run_history.list_runs(
        db,
        operation=operation.value if operation else None,
        limit=limit
    )
    return [_to_run_response(run) for run in runs]


@router.get(
    "/status",
    summary="System status",
    description="Service information and health of database, Headscale and storage"
)
def get_system_status(
    loader: DesiredStateLoader = Depends(get_loader),
    control_plane: ControlPlane = Depends(get_control_plane),
    reconciler: Reconciler = Depends(get_reconciler),
    db: Session = Depends(get_db)
):
    """System status"""
    now = utcnow()
    uptime = (now - startup_time).total_seconds() if startup_time else None

    last_apply = run_history.last_run(db, RunOperation.APPLY.value)

    return {
        "service": "headscale-orchestrator",
        "version": settings.APP_VERSION,
        "uptime_seconds": uptime,
        "timestamp": int(now.timestamp()),
        "reconciliation_in_progress": reconciler.in_progress,
        "health": {
            "database": "connected" if db_manager.check_connection() else "disconnected",
            "headscale": "reachable" if control_plane.ping() else "unreachable",
            "storage": "accessible" if loader.storage_accessible() else "inaccessible",
        },
        "runs_recorded": db_manager.run_count(),
        "last_apply": _to_run_response(last_apply) if last_apply else None,
    }
