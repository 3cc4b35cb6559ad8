"""Exception hierarchy for the reconciliation subsystem."""

from __future__ import annotations


class ReconcileError(Exception):
    """Base exception for reconciliation errors."""


class EntityCategoryError(ReconcileError, ValueError):
    """Entities of different categories were compared."""


class InvalidEndpointError(ReconcileError, ValueError):
    """A cluster endpoint could not be parsed into an instance key."""

    def __init__(self, endpoint: str, reason: str = ""):
        message = f"Invalid cluster endpoint: {endpoint!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.endpoint = endpoint


class SyncError(ReconcileError):
    """Synchronising one entity from source to destination failed."""

    def __init__(
        self,
        message: str,
        *,
        category: str | None = None,
        key: str | None = None,
    ):
        super().__init__(message)
        self.category = category
        self.key = key


class UnknownClusterError(ReconcileError, LookupError):
    """Cluster id is not present in the directory."""

    def __init__(self, cluster_id: int):
        super().__init__(f"Cluster not found: {cluster_id}")
        self.cluster_id = cluster_id


class UnknownTagError(ReconcileError, LookupError):
    """Environment tag id is not present in the directory."""

    def __init__(self, tag_id: int):
        super().__init__(f"Environment tag not found: {tag_id}")
        self.tag_id = tag_id
