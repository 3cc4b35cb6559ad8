"""Tag membership models used by the bulk tag planner."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ClusterTags(BaseModel):
    """Current tag membership of one cluster."""

    model_config = ConfigDict(frozen=True)

    id: int
    current_tag_ids: frozenset[int] = Field(default_factory=frozenset)


class TagOperation(BaseModel):
    """One batched call: apply `tag_ids` to every cluster in `cluster_ids`."""

    model_config = ConfigDict(frozen=True)

    cluster_ids: frozenset[int]
    tag_ids: frozenset[int]

    def pairs(self) -> set[tuple[int, int]]:
        return {(c, t) for c in self.cluster_ids for t in self.tag_ids}


class TagOperationPlan(BaseModel):
    """Assign and remove operations computed for a tag dialog submission."""

    model_config = ConfigDict(frozen=True)

    assign: list[TagOperation] = Field(default_factory=list)
    remove: list[TagOperation] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_disjoint(self) -> "TagOperationPlan":
        assigned: set[tuple[int, int]] = set()
        for op in self.assign:
            assigned |= op.pairs()
        removed: set[tuple[int, int]] = set()
        for op in self.remove:
            removed |= op.pairs()
        overlap = assigned & removed
        if overlap:
            raise ValueError(
                f"cluster/tag pairs both assigned and removed: {sorted(overlap)}"
            )
        return self

    @property
    def is_empty(self) -> bool:
        return not (self.assign or self.remove)

    @property
    def call_count(self) -> int:
        return len(self.assign) + len(self.remove)

    def summary(self) -> str:
        """Get a human-readable summary of the plan."""
        lines = []
        for op in self.assign:
            lines.append(
                f"  + tags {_fmt(op.tag_ids)} -> clusters {_fmt(op.cluster_ids)}"
            )
        for op in self.remove:
            lines.append(
                f"  - tags {_fmt(op.tag_ids)} -> clusters {_fmt(op.cluster_ids)}"
            )
        if not lines:
            return "No tag changes needed"
        return f"Tag operations: {self.call_count}\n" + "\n".join(lines)


def _fmt(ids: frozenset[int]) -> str:
    return ",".join(str(i) for i in sorted(ids))
