"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Depends

from kmm.reconcile.models import HealthResponse
from kmm.reconcile.routes.deps import get_directory

router = APIRouter(tags=["health"])

VERSION = "0.1.0"


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness check - is the service running?"""
    return HealthResponse(status="healthy", version=VERSION)


@router.get("/ready", response_model=HealthResponse)
async def readiness_check(directory=Depends(get_directory)) -> HealthResponse:
    """Readiness check - can the cluster inventory be read?"""
    details: dict[str, Any] = {"inventory": str(directory.path)}
    try:
        inventory = directory.load()
    except (OSError, ValueError) as e:
        details["error"] = str(e)
        return HealthResponse(status="unhealthy", version=VERSION, details=details)

    details["cluster_count"] = len(inventory.clusters)
    details["tag_count"] = len(inventory.tags)
    return HealthResponse(status="healthy", version=VERSION, details=details)
