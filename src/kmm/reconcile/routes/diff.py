"""Realm comparison and entity sync endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from kmm.reconcile.config import settings
from kmm.reconcile.errors import UnknownClusterError
from kmm.reconcile.models import (
    CategoryDiffResponse,
    DiffRequest,
    DiffResponse,
    FetchFailureResponse,
    SyncRequest,
    SyncResponse,
)
from kmm.reconcile.routes.deps import get_audit_logger, get_service, raise_404
from kmm.reconcile.service import ComparisonResult

router = APIRouter(tags=["diff"])


def to_diff_response(result: ComparisonResult) -> DiffResponse:
    degraded = result.degraded_categories()
    return DiffResponse(
        source_cluster_id=result.source_id,
        destination_cluster_id=result.destination_id,
        two_way=result.two_way,
        categories=[
            CategoryDiffResponse.from_diff(diff, degraded=category in degraded)
            for category, diff in result.diffs.items()
        ],
        degraded=[
            FetchFailureResponse(
                side=f.side, cluster_id=f.cluster_id, category=f.category, error=f.error
            )
            for f in result.degraded
        ],
    )


@router.post("/diff", response_model=DiffResponse)
async def compare_clusters(
    request: DiffRequest,
    service=Depends(get_service),
) -> DiffResponse:
    """Compare the selected categories of two clusters."""
    two_way = settings.default_two_way if request.two_way is None else request.two_way
    try:
        result = await service.compare(
            request.source_cluster_id,
            request.destination_cluster_id,
            two_way=two_way,
            categories=request.categories,
        )
    except UnknownClusterError as e:
        raise_404(str(e))
    return to_diff_response(result)


@router.post("/sync", response_model=SyncResponse)
async def sync_entities(
    request: SyncRequest,
    service=Depends(get_service),
    audit=Depends(get_audit_logger),
) -> SyncResponse:
    """Push entities from source to destination and return the fresh diff.

    Keys are synced independently; failed keys are listed in `failures`.
    """
    two_way = settings.default_two_way if request.two_way is None else request.two_way
    try:
        outcome = await service.sync(
            request.source_cluster_id,
            request.destination_cluster_id,
            request.category,
            request.keys,
            two_way=two_way,
        )
    except UnknownClusterError as e:
        raise_404(str(e))
    except Exception as e:
        audit.log_error(operation="sync", error=str(e), cluster_id=request.destination_cluster_id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Sync failed: {e}",
        )

    return SyncResponse(
        synced=outcome.synced,
        failures=outcome.failures,
        diff=to_diff_response(outcome.comparison),
    )
