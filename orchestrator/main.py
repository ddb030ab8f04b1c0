# orchestrator/main.py
"""
Headscale Orchestrator - Main Application
FastAPI application entry point
"""

import uvicorn
import logging
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from orchestrator.api.v1 import reconcile, keys, admin
from orchestrator.api.deps import get_metrics, verify_api_token
from orchestrator.config import settings
from orchestrator.core.exceptions import (
    LoadError,
    ControlPlaneError,
    ConfigValidationError,
    ReconcileInProgressError,
)
from orchestrator.core.metrics import MetricsSink
from orchestrator.database.session import init_db
from orchestrator.schemas.base import HealthResponse, utcnow

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create run-history tables and record the start time"""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Headscale URL: {settings.HEADSCALE_URL} (backend: {settings.CONTROL_PLANE_BACKEND})")
    logger.info(f"Data path: {settings.DATA_PATH}")
    if not settings.api_token:
        logger.warning("No API_TOKEN or HEADSCALE_API_KEY configured, all API requests will be rejected")

    init_db()
    reconcile.startup_time = utcnow()

    logger.info("Orchestrator ready")

    yield

    logger.info(f"Stopping {settings.APP_NAME}")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Headscale Orchestrator API

    Keeps users, subnet routes and the ACL policy declared in the data
    directory in sync with a Headscale control plane:
    - Apply desired state (with dry-run and validation)
    - Drift detection
    - Pre-auth key issuance
    - Live user, node and route management

    ## Authentication

    All /api/v1 endpoints require `Authorization: Bearer <token>`.
    /health, /healthz and /metrics are open.
    """,
    version=settings.APP_VERSION,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# === Exception Handlers ===

def _error(status_code: int, error: str, error_code: str, details: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "error_code": error_code,
            "details": details,
            "timestamp": utcnow().isoformat()
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters"""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    message = "; ".join(f"{e['field']}: {e['message']}" for e in errors) or "Invalid request"
    return _error(status.HTTP_400_BAD_REQUEST, message, "BAD_REQUEST", {"errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Flatten HTTPException detail into the standard error body"""
    if isinstance(exc.detail, dict):
        error = exc.detail.get("error", "Request failed")
        error_code = exc.detail.get("error_code", "HTTP_ERROR")
    else:
        error = str(exc.detail)
        error_code = "HTTP_ERROR"

    response = _error(exc.status_code, error, error_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(LoadError)
async def load_error_handler(request: Request, exc: LoadError):
    logger.error(f"Load error: {exc}")
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), "LOAD_ERROR",
        {"document": exc.document, "path": exc.path}
    )


@app.exception_handler(ControlPlaneError)
async def control_plane_error_handler(request: Request, exc: ControlPlaneError):
    logger.error(f"Control plane error: {exc}")
    status_code = (
        status.HTTP_404_NOT_FOUND if exc.status_code == 404
        else status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    return _error(status_code, str(exc), "CONTROL_PLANE_ERROR", {"operation": exc.operation})


@app.exception_handler(ConfigValidationError)
async def config_validation_error_handler(request: Request, exc: ConfigValidationError):
    return _error(status.HTTP_400_BAD_REQUEST, str(exc), "VALIDATION_ERROR", {"errors": exc.errors})


@app.exception_handler(ReconcileInProgressError)
async def reconcile_in_progress_handler(request: Request, exc: ReconcileInProgressError):
    return _error(status.HTTP_409_CONFLICT, str(exc), "RECONCILE_IN_PROGRESS")


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.exception(f"Unexpected error: {exc}")

    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        "INTERNAL_ERROR",
        {"message": str(exc)} if settings.DEBUG else None
    )


# === Include Routers ===

api_dependencies = [Depends(verify_api_token)]

app.include_router(
    reconcile.router,
    prefix=settings.API_PREFIX,
    tags=["Reconciliation"],
    dependencies=api_dependencies
)

app.include_router(
    keys.router,
    prefix=settings.API_PREFIX,
    tags=["Auth Keys"],
    dependencies=api_dependencies
)

app.include_router(
    admin.router,
    prefix=settings.API_PREFIX,
    tags=["Entities"],
    dependencies=api_dependencies
)


# === Open Endpoints ===

@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Liveness check"
)
@app.get("/healthz", response_model=HealthResponse, include_in_schema=False)
async def health_check():
    """Health check endpoint for monitoring"""
    uptime = None
    if reconcile.startup_time:
        uptime = (utcnow() - reconcile.startup_time).total_seconds()

    return HealthResponse(
        status="healthy",
        version=settings.APP_VERSION,
        uptime_seconds=uptime,
    )


@app.get(
    "/metrics",
    response_class=PlainTextResponse,
    summary="Metrics",
    description="Prometheus text exposition"
)
async def metrics(sink: MetricsSink = Depends(get_metrics)):
    return PlainTextResponse(
        sink.export_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )


# === Run Application ===

def run():
    uvicorn.run(
        "orchestrator.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    run()
