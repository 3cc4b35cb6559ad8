"""Cluster directory, topology and environment tag endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from kmm.reconcile.errors import UnknownClusterError, UnknownTagError
from kmm.reconcile.models import (
    Cluster,
    EnvironmentTag,
    TagApplyResponse,
    TagBatchFailureResponse,
    TagOperationPlan,
    TagPlanRequest,
    TopologyNode,
)
from kmm.reconcile.routes.deps import get_directory, get_service, raise_404

router = APIRouter(tags=["clusters"])


async def _check_tags(directory, request: TagPlanRequest) -> None:
    known = {t.id for t in await directory.list_tags()}
    for tag_id in [*request.target_tag_ids, *(request.managed_tag_ids or [])]:
        if tag_id not in known:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(UnknownTagError(tag_id)),
            )


@router.get("/clusters", response_model=list[Cluster])
async def list_clusters(directory=Depends(get_directory)) -> list[Cluster]:
    return await directory.list_clusters()


@router.get("/topology", response_model=list[TopologyNode])
async def get_topology(service=Depends(get_service)) -> list[TopologyNode]:
    """Clusters arranged as instance -> group -> clusters."""
    try:
        topology = await service.topology()
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    return topology.to_nodes()


@router.get("/tags", response_model=list[EnvironmentTag])
async def list_tags(directory=Depends(get_directory)) -> list[EnvironmentTag]:
    return await directory.list_tags()


@router.post("/tags/plan", response_model=TagOperationPlan)
async def plan_tags(
    request: TagPlanRequest,
    service=Depends(get_service),
    directory=Depends(get_directory),
) -> TagOperationPlan:
    """Compute the batched tag operations for a selection, without applying them."""
    await _check_tags(directory, request)
    try:
        return await service.plan_tags(
            request.cluster_ids, request.target_tag_ids, request.managed_tag_ids
        )
    except UnknownClusterError as e:
        raise_404(str(e))


@router.post("/tags/apply", response_model=TagApplyResponse)
async def apply_tags(
    request: TagPlanRequest,
    service=Depends(get_service),
    directory=Depends(get_directory),
) -> TagApplyResponse:
    """Plan and submit tag operations. Failed batches are reported, not retried."""
    await _check_tags(directory, request)
    try:
        plan = await service.plan_tags(
            request.cluster_ids, request.target_tag_ids, request.managed_tag_ids
        )
        result = await service.apply_tag_plan(plan)
    except UnknownClusterError as e:
        raise_404(str(e))

    return TagApplyResponse(
        plan=plan,
        failures=[
            TagBatchFailureResponse(action=f.action, operation=f.operation, error=f.error)
            for f in result.failures
        ],
    )
