"""Bulk tag reconciliation planner.

Turns a desired tag set for a selection of clusters into the smallest list
of batched assign/remove calls: clusters needing exactly the same change
share one call.
"""

from __future__ import annotations

from collections.abc import Iterable

from kmm.reconcile.models.clusters import Cluster
from kmm.reconcile.models.tags import ClusterTags, TagOperation, TagOperationPlan


def plan_tag_changes(
    target_tag_ids: Iterable[int],
    clusters: Iterable[ClusterTags | Cluster],
    managed_tag_ids: Iterable[int] | None = None,
) -> TagOperationPlan:
    """Compute the tag operations bringing clusters to the target tag set.

    Args:
        target_tag_ids: Tags every cluster should carry
        clusters: Clusters with their current tag membership
        managed_tag_ids: Tags under the caller's control. Tags outside this
            universe are never assigned nor removed. None means all tags.

    Returns:
        TagOperationPlan with operations sorted by their tag-id key.
    """
    target = frozenset(target_tag_ids)
    managed = None if managed_tag_ids is None else frozenset(managed_tag_ids)
    if managed is not None:
        target &= managed

    assign_groups: dict[tuple[int, ...], set[int]] = {}
    remove_groups: dict[tuple[int, ...], set[int]] = {}

    for cluster in clusters:
        cluster_id, current = _membership(cluster)
        controlled = current if managed is None else current & managed

        to_assign = target - current
        to_remove = controlled - target

        if to_assign:
            assign_groups.setdefault(tuple(sorted(to_assign)), set()).add(cluster_id)
        if to_remove:
            remove_groups.setdefault(tuple(sorted(to_remove)), set()).add(cluster_id)

    return TagOperationPlan(
        assign=_operations(assign_groups),
        remove=_operations(remove_groups),
    )


def _membership(cluster: ClusterTags | Cluster) -> tuple[int, frozenset[int]]:
    if isinstance(cluster, Cluster):
        return cluster.id, cluster.tag_ids
    return cluster.id, cluster.current_tag_ids


def _operations(groups: dict[tuple[int, ...], set[int]]) -> list[TagOperation]:
    return [
        TagOperation(cluster_ids=frozenset(groups[key]), tag_ids=frozenset(key))
        for key in sorted(groups)
    ]
