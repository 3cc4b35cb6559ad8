"""YAML-backed cluster directory.

Example inventory:
    tags:
      - id: 1
        name: production
        color: "#dc2626"
      - id: 2
        name: staging

    clusters:
      - id: 1
        name: acme-prod
        base_url: https://sso.acme.example
        realm: acme
        group_name: acme
        tag_ids: [1]
        client_id: kmm-admin
        client_secret: ${ACME_PROD_SECRET}   # supports env vars
      - id: 2
        name: acme-staging
        base_url: https://sso.acme.example:443
        realm: acme-staging
        username: admin
        password: ${ACME_STAGING_PASSWORD:-admin}
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from kmm.reconcile.errors import UnknownClusterError, UnknownTagError
from kmm.reconcile.models.clusters import Cluster, ClusterConfig, EnvironmentTag

logger = logging.getLogger(__name__)

# Pattern for ${VAR} and ${VAR:-default} interpolation
_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(:-([^}]*))?\}")


def _resolve_env_str(s: str) -> str:
    """Resolve environment variable placeholders in a string."""
    def repl(m: re.Match[str]) -> str:
        val = os.getenv(m.group(1))
        if val is None or val == "":
            default = m.group(3)
            return default if default is not None else ""
        return val

    # Resolve repeatedly until stable (handles nested defaults)
    prev = None
    cur = s
    for _ in range(5):
        if cur == prev:
            break
        prev = cur
        cur = _ENV_PATTERN.sub(repl, cur)
    return cur


def _resolve_env(value: Any) -> Any:
    """Recursively resolve environment variables in a data structure."""
    if isinstance(value, str):
        return _resolve_env_str(value)
    if isinstance(value, list):
        return [_resolve_env(v) for v in value]
    if isinstance(value, dict):
        return {k: _resolve_env(v) for k, v in value.items()}
    return value


def _load_document(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Inventory file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid inventory file {path}: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Inventory file must be a YAML mapping: {path}")
    return raw


class InventoryConfig(BaseModel):
    """Clusters and environment tags of one console installation."""

    clusters: list[ClusterConfig] = Field(default_factory=list)
    tags: list[EnvironmentTag] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_ids(self) -> "InventoryConfig":
        for kind, ids in (
            ("cluster", [c.id for c in self.clusters]),
            ("tag", [t.id for t in self.tags]),
        ):
            seen: set[int] = set()
            for i in ids:
                if i in seen:
                    raise ValueError(f"Duplicate {kind} id: {i}")
                seen.add(i)

        known_tags = {t.id for t in self.tags}
        for cluster in self.clusters:
            unknown = cluster.tag_ids - known_tags
            if unknown:
                raise ValueError(
                    f"Cluster {cluster.id} references unknown tags: {sorted(unknown)}"
                )
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InventoryConfig":
        """Load the inventory from a YAML file with env var interpolation."""
        return cls.model_validate(_resolve_env(_load_document(Path(path))))

    def get_cluster(self, cluster_id: int) -> ClusterConfig:
        for cluster in self.clusters:
            if cluster.id == cluster_id:
                return cluster
        raise UnknownClusterError(cluster_id)


class FileClusterDirectory:
    """Cluster directory and tag mutator backed by an inventory file.

    The file is re-read on every call so external edits are picked up.
    Tag mutations rewrite the original document, placeholders included,
    so resolved secrets never reach the disk.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> InventoryConfig:
        return InventoryConfig.from_yaml(self._path)

    async def list_clusters(self) -> list[Cluster]:
        return [c.public() for c in self.load().clusters]

    async def list_tags(self) -> list[EnvironmentTag]:
        return list(self.load().tags)

    def get_config(self, cluster_id: int) -> ClusterConfig:
        """Get a cluster with its credentials.

        Raises:
            UnknownClusterError: If the cluster is not in the inventory.
        """
        return self.load().get_cluster(cluster_id)

    async def assign_tags(self, cluster_ids: list[int], tag_ids: list[int]) -> None:
        self._mutate_tags(cluster_ids, tag_ids, assign=True)

    async def remove_tags(self, cluster_ids: list[int], tag_ids: list[int]) -> None:
        self._mutate_tags(cluster_ids, tag_ids, assign=False)

    def _mutate_tags(self, cluster_ids: list[int], tag_ids: list[int], assign: bool) -> None:
        # Synchronous read-modify-write: concurrent batches never interleave.
        inventory = self.load()
        known_clusters = {c.id for c in inventory.clusters}
        known_tags = {t.id for t in inventory.tags}
        for cluster_id in cluster_ids:
            if cluster_id not in known_clusters:
                raise UnknownClusterError(cluster_id)
        for tag_id in tag_ids:
            if tag_id not in known_tags:
                raise UnknownTagError(tag_id)

        document = _load_document(self._path)
        targets = set(cluster_ids)
        changed = set(tag_ids)
        for entry in document.get("clusters") or []:
            if entry.get("id") not in targets:
                continue
            current = set(entry.get("tag_ids") or [])
            current = current | changed if assign else current - changed
            entry["tag_ids"] = sorted(current)

        self._path.write_text(yaml.safe_dump(document, sort_keys=False))
        logger.info(
            "%s tags %s %s clusters %s",
            "Assigned" if assign else "Removed",
            sorted(changed),
            "to" if assign else "from",
            sorted(targets),
        )
