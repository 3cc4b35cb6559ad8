"""API request and response models."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from .diff import CategoryDiff, DiffStatus
from .entities import EntityCategory
from .tags import TagOperation, TagOperationPlan


# --- Health ---


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"]
    version: str
    details: dict[str, Any] = Field(default_factory=dict)


# --- Diff ---


class DiffRequest(BaseModel):
    """Compare two clusters."""

    source_cluster_id: int = Field(..., description="Cluster read as source")
    destination_cluster_id: int = Field(..., description="Cluster read as destination")
    two_way: bool | None = Field(
        default=None,
        description="Report destination-only entities (defaults to service setting)",
    )
    categories: list[EntityCategory] = Field(
        default_factory=lambda: list(EntityCategory),
        description="Entity categories to compare",
    )


class CategoryDiffResponse(BaseModel):
    category: EntityCategory
    counts: dict[DiffStatus, int]
    records: list[dict[str, Any]]
    degraded: bool = False

    @classmethod
    def from_diff(cls, diff: CategoryDiff, degraded: bool = False) -> "CategoryDiffResponse":
        return cls(
            category=diff.category,
            counts=diff.counts(),
            records=[
                r.model_dump(mode="json", by_alias=True, exclude_none=True)
                for r in diff.records
            ],
            degraded=degraded,
        )


class FetchFailureResponse(BaseModel):
    side: Literal["source", "destination"]
    cluster_id: int
    category: EntityCategory
    error: str


class DiffResponse(BaseModel):
    """Per-category diff of two clusters."""

    source_cluster_id: int
    destination_cluster_id: int
    two_way: bool
    categories: list[CategoryDiffResponse]
    degraded: list[FetchFailureResponse] = Field(default_factory=list)


# --- Sync ---


class SyncRequest(BaseModel):
    """Push entities of one category from source to destination."""

    source_cluster_id: int
    destination_cluster_id: int
    category: EntityCategory
    keys: list[str] = Field(..., min_length=1, description="Natural keys to sync")
    two_way: bool | None = None


class SyncResponse(BaseModel):
    synced: list[str]
    failures: dict[str, str] = Field(default_factory=dict)
    diff: DiffResponse


# --- Tags ---


class TagPlanRequest(BaseModel):
    """Desired tags for a selection of clusters."""

    cluster_ids: list[int] = Field(..., min_length=1)
    target_tag_ids: list[int] = Field(default_factory=list)
    managed_tag_ids: list[int] | None = Field(
        default=None,
        description="Tags under the dialog's control (all tags when omitted)",
    )


class TagBatchFailureResponse(BaseModel):
    action: Literal["assign", "remove"]
    operation: TagOperation
    error: str


class TagApplyResponse(BaseModel):
    plan: TagOperationPlan
    failures: list[TagBatchFailureResponse] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures
