"""Domain models."""

from .clusters import (
    Cluster,
    ClusterConfig,
    EnvironmentTag,
    NodeKind,
    TopologyNode,
)
from .diff import CategoryDiff, DiffRecord, DiffStatus, SetDelta
from .entities import (
    Client,
    ComparisonField,
    Entity,
    EntityCategory,
    FieldKind,
    Group,
    Role,
    User,
    entity_model,
    parse_entities,
)
from .requests import (
    CategoryDiffResponse,
    DiffRequest,
    DiffResponse,
    FetchFailureResponse,
    HealthResponse,
    SyncRequest,
    SyncResponse,
    TagApplyResponse,
    TagBatchFailureResponse,
    TagPlanRequest,
)
from .tags import ClusterTags, TagOperation, TagOperationPlan

__all__ = [
    "CategoryDiff",
    "CategoryDiffResponse",
    "DiffRequest",
    "DiffResponse",
    "FetchFailureResponse",
    "HealthResponse",
    "SyncRequest",
    "SyncResponse",
    "TagApplyResponse",
    "TagBatchFailureResponse",
    "TagPlanRequest",
    "Client",
    "Cluster",
    "ClusterConfig",
    "ClusterTags",
    "ComparisonField",
    "DiffRecord",
    "DiffStatus",
    "Entity",
    "EntityCategory",
    "EnvironmentTag",
    "FieldKind",
    "Group",
    "NodeKind",
    "Role",
    "SetDelta",
    "TagOperation",
    "TagOperationPlan",
    "TopologyNode",
    "User",
    "entity_model",
    "parse_entities",
]
