"""Hierarchical cluster topology."""

from .builder import (
    UNGROUPED_KEY,
    InstanceGroup,
    InstanceKey,
    Topology,
    build_topology,
    instance_key,
)

__all__ = [
    "InstanceGroup",
    "InstanceKey",
    "Topology",
    "UNGROUPED_KEY",
    "build_topology",
    "instance_key",
]
