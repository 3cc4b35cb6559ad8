"""Tag selection model of the bulk tag dialog.

The selection is a plain value: each tag maps to a `TagState`, and updating
a choice returns a new selection. Tags the operator leaves `mixed` are not
under the dialog's control and are never assigned nor removed.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from kmm.reconcile.models.clusters import Cluster
from kmm.reconcile.models.tags import ClusterTags, TagOperationPlan

from .planner import plan_tag_changes


class TagState(str, Enum):
    CHECKED = "checked"
    UNCHECKED = "unchecked"
    MIXED = "mixed"


@dataclass(frozen=True)
class TagSelection:
    """Per-tag state for a set of selected clusters."""

    states: Mapping[int, TagState] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "states", MappingProxyType(dict(self.states)))

    @classmethod
    def from_clusters(
        cls,
        clusters: Iterable[ClusterTags | Cluster],
        tag_ids: Iterable[int],
    ) -> "TagSelection":
        """Initial selection: checked on all clusters, unchecked on none, else mixed."""
        memberships = [_tags_of(c) for c in clusters]
        states: dict[int, TagState] = {}
        for tag_id in tag_ids:
            count = sum(1 for tags in memberships if tag_id in tags)
            if memberships and count == len(memberships):
                states[tag_id] = TagState.CHECKED
            elif count == 0:
                states[tag_id] = TagState.UNCHECKED
            else:
                states[tag_id] = TagState.MIXED
        return cls(states)

    def with_choice(self, tag_id: int, checked: bool) -> "TagSelection":
        states = dict(self.states)
        states[tag_id] = TagState.CHECKED if checked else TagState.UNCHECKED
        return TagSelection(states)

    def state_of(self, tag_id: int) -> TagState:
        return self.states.get(tag_id, TagState.UNCHECKED)

    @property
    def target_tag_ids(self) -> frozenset[int]:
        return frozenset(t for t, s in self.states.items() if s is TagState.CHECKED)

    @property
    def managed_tag_ids(self) -> frozenset[int]:
        return frozenset(t for t, s in self.states.items() if s is not TagState.MIXED)

    def plan(self, clusters: Iterable[ClusterTags | Cluster]) -> TagOperationPlan:
        return plan_tag_changes(
            self.target_tag_ids, clusters, managed_tag_ids=self.managed_tag_ids
        )


def _tags_of(cluster: ClusterTags | Cluster) -> frozenset[int]:
    if isinstance(cluster, Cluster):
        return cluster.tag_ids
    return cluster.current_tag_ids
