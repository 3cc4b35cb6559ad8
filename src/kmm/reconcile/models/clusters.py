"""Cluster, environment tag and topology models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Cluster(BaseModel):
    """A managed realm: one realm on one identity-provider instance."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Cluster identifier")
    name: str = Field(..., description="Display name")
    base_url: str = Field(..., description="Keycloak base URL (instance endpoint)")
    realm: str = Field(default="master", description="Realm name")
    group_name: str | None = Field(
        default=None, description="Operator-assigned group label"
    )
    tag_ids: frozenset[int] = Field(
        default_factory=frozenset, description="Assigned environment tags"
    )

    @field_validator("tag_ids", mode="before")
    @classmethod
    def _coerce_tag_ids(cls, v):
        if v is None:
            return frozenset()
        return v

    @property
    def group_label(self) -> str | None:
        """Trimmed group label; blank labels count as absent."""
        if self.group_name is None:
            return None
        label = self.group_name.strip()
        return label or None

    def public(self) -> "Cluster":
        """Strip connection details, keeping only the directory record."""
        return Cluster.model_validate(
            self.model_dump(include=set(Cluster.model_fields))
        )


class ClusterConfig(Cluster):
    """Cluster record plus the credentials used to reach its admin API."""

    # Service client authentication (preferred)
    client_id: str | None = Field(default=None, repr=False)
    client_secret: str | None = Field(default=None, repr=False)

    # Admin user authentication
    username: str | None = Field(default=None, repr=False)
    password: str | None = Field(default=None, repr=False)


class EnvironmentTag(BaseModel):
    """Operator-defined label attachable to many clusters."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    color: str = "#6b7280"
    description: str = ""


class NodeKind(str, Enum):
    """Level of a topology node."""

    INSTANCE = "instance"
    GROUP = "group"
    LEAF = "leaf"


class TopologyNode(BaseModel):
    """Navigation tree node: instance -> group -> leaf bucket of clusters."""

    kind: NodeKind
    key: str
    children: list["TopologyNode"] = Field(default_factory=list)
    clusters: list[Cluster] = Field(default_factory=list)


TopologyNode.model_rebuild()
