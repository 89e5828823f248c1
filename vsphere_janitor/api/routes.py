"""API route handlers."""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Response, status

from ..core.config import settings, get_config_validation_result
from ..core.models import (
    CleanupTriggerResponse,
    HealthResponse,
    JanitorStatusResponse,
    MetricsResponse,
    PathRunStatus,
)
from ..services.janitor_service import janitor_service
from ..services.metrics_service import metrics_registry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/healthz", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/readyz", response_model=HealthResponse, tags=["Health"])
async def readiness_check(response: Response):
    """Readiness check endpoint."""

    # Configuration errors keep the janitor loop stopped; report them as a
    # distinct status instead of failing the probe forever.
    config_result = get_config_validation_result()
    if config_result and config_result.has_errors:
        response.status_code = status.HTTP_200_OK
        return HealthResponse(
            status="config_error",
            version=settings.app_version,
            timestamp=datetime.now(timezone.utc),
        )

    if janitor_service.last_pass_at is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="First cleanup pass not yet completed",
        )

    response.status_code = status.HTTP_200_OK
    return HealthResponse(
        status="ready",
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/api/v1/status", response_model=JanitorStatusResponse, tags=["Janitor"])
async def get_janitor_status():
    """Report the most recent cleanup results per inventory path."""

    janitor = janitor_service.janitor
    return JanitorStatusResponse(
        running=janitor_service.running,
        dummy_data=settings.dummy_data,
        paths=janitor_service.paths,
        passes_completed=janitor_service.passes_completed,
        last_pass_at=janitor_service.last_pass_at,
        tracked_zero_uptime_vms=janitor.tracked_count if janitor else 0,
        last_runs=[PathRunStatus(**stats.as_dict()) for stats in janitor_service.last_runs()],
    )


@router.get("/api/v1/metrics", response_model=MetricsResponse, tags=["Janitor"])
async def get_metrics():
    """Return the current metrics registry snapshot."""
    return MetricsResponse(**metrics_registry.snapshot())


@router.post(
    "/api/v1/cleanup",
    response_model=CleanupTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Janitor"],
)
async def trigger_cleanup():
    """Ask the janitor loop to start its next pass immediately."""

    if not janitor_service.running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Janitor loop is not running",
        )

    janitor_service.trigger()
    logger.info("Manual cleanup pass requested")
    return CleanupTriggerResponse(status="accepted", message="Cleanup pass requested")
