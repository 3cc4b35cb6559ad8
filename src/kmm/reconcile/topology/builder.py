"""Hierarchical topology: instance -> group -> cluster.

Clusters are partitioned in three passes:

1. by instance key (host and effective port of the endpoint);
2. instances hosting two or more clusters are split by group label into
   named sub-groups plus an ungrouped bucket scoped to that instance;
3. single-cluster instances carrying a label are collected by label, and a
   label only becomes a standalone group when at least two instances share
   it. Lone candidates are demoted to the top-level ungrouped bucket.

The builder never sorts: display order is the renderer's concern
(`Topology.to_nodes`).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import NamedTuple

import httpx

from kmm.reconcile.errors import InvalidEndpointError
from kmm.reconcile.models.clusters import Cluster, NodeKind, TopologyNode

UNGROUPED_KEY = "ungrouped"

_DEFAULT_PORTS = {"https": 443, "http": 80}


class InstanceKey(NamedTuple):
    """Physical identity-provider deployment: host plus effective port."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def instance_key(base_url: str) -> InstanceKey:
    """Derive the instance key of a cluster endpoint.

    Raises:
        InvalidEndpointError: If no host can be read from the endpoint.
    """
    raw = (base_url or "").strip()
    if not raw:
        raise InvalidEndpointError(base_url, "empty endpoint")
    if "://" not in raw:
        raw = f"http://{raw}"

    try:
        url = httpx.URL(raw)
    except httpx.InvalidURL as e:
        raise InvalidEndpointError(base_url, str(e)) from e

    host = url.host.lower()
    if not host:
        raise InvalidEndpointError(base_url, "missing host")

    port = url.port or _DEFAULT_PORTS.get(url.scheme, 80)
    return InstanceKey(host=host, port=port)


@dataclass
class InstanceGroup:
    """Clusters of one multi-realm instance, split by group label."""

    groups: dict[str, list[Cluster]] = field(default_factory=dict)
    ungrouped: list[Cluster] = field(default_factory=list)

    def iter_clusters(self) -> Iterator[Cluster]:
        for members in self.groups.values():
            yield from members
        yield from self.ungrouped


@dataclass
class Topology:
    """Result of `build_topology`."""

    instance_groups: dict[InstanceKey, InstanceGroup] = field(default_factory=dict)
    standalone_groups: dict[str, list[Cluster]] = field(default_factory=dict)
    ungrouped: list[Cluster] = field(default_factory=list)

    def iter_clusters(self) -> Iterator[Cluster]:
        """Yield every cluster once, whatever node it landed in."""
        for instance in self.instance_groups.values():
            yield from instance.iter_clusters()
        for members in self.standalone_groups.values():
            yield from members
        yield from self.ungrouped

    def to_nodes(self) -> list[TopologyNode]:
        """Render the navigation tree, sorted alphabetically by key.

        Multi-realm instances come first, then standalone groups, then the
        top-level ungrouped bucket.
        """
        nodes: list[TopologyNode] = []

        for key in sorted(self.instance_groups):
            instance = self.instance_groups[key]
            children = [
                TopologyNode(
                    kind=NodeKind.GROUP,
                    key=label,
                    children=[_leaf(label, instance.groups[label])],
                )
                for label in sorted(instance.groups)
            ]
            if instance.ungrouped:
                children.append(_leaf(UNGROUPED_KEY, instance.ungrouped))
            nodes.append(
                TopologyNode(kind=NodeKind.INSTANCE, key=str(key), children=children)
            )

        for label in sorted(self.standalone_groups):
            nodes.append(
                TopologyNode(
                    kind=NodeKind.GROUP,
                    key=label,
                    children=[_leaf(label, self.standalone_groups[label])],
                )
            )

        if self.ungrouped:
            nodes.append(_leaf(UNGROUPED_KEY, self.ungrouped))

        return nodes


def _leaf(key: str, clusters: list[Cluster]) -> TopologyNode:
    ordered = sorted(clusters, key=lambda c: (c.name, c.id))
    return TopologyNode(
        kind=NodeKind.LEAF, key=key, clusters=[c.public() for c in ordered]
    )


def build_topology(clusters: Iterable[Cluster]) -> Topology:
    """Partition clusters into the instance/group hierarchy."""
    topology = Topology()

    # Pass 1: partition by instance
    by_instance: dict[InstanceKey, list[Cluster]] = {}
    for cluster in clusters:
        by_instance.setdefault(instance_key(cluster.base_url), []).append(cluster)

    # Pass 2: split multi-realm instances; collect standalone candidates
    candidates: dict[str, list[Cluster]] = {}
    for key, members in by_instance.items():
        if len(members) == 1:
            cluster = members[0]
            label = cluster.group_label
            if label is None:
                topology.ungrouped.append(cluster)
            else:
                candidates.setdefault(label, []).append(cluster)
            continue

        instance = InstanceGroup()
        for cluster in members:
            label = cluster.group_label
            if label is None:
                instance.ungrouped.append(cluster)
            else:
                instance.groups.setdefault(label, []).append(cluster)
        topology.instance_groups[key] = instance

    # Pass 3: materialise shared labels, demote singletons
    for label, members in candidates.items():
        if len(members) >= 2:
            topology.standalone_groups[label] = members
        else:
            topology.ungrouped.extend(members)

    return topology
