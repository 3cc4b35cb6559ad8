"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest

from kmm.reconcile.models import Cluster, EntityCategory


INVENTORY_YAML = """\
tags:
  - id: 1
    name: production
    color: "#dc2626"
  - id: 2
    name: staging
  - id: 3
    name: eu

clusters:
  - id: 1
    name: acme-prod
    base_url: https://sso.acme.example
    realm: acme
    group_name: acme
    tag_ids: [1, 3]
    client_id: kmm-admin
    client_secret: ${KMM_TEST_PROD_SECRET:-fallback-secret}
  - id: 2
    name: acme-staging
    base_url: https://SSO.acme.example:443/auth
    realm: acme-staging
    group_name: acme
    tag_ids: [2]
    username: admin
    password: ${KMM_TEST_STAGING_PASSWORD}
  - id: 3
    name: globex
    base_url: http://globex.example:8080
    realm: globex
"""


@pytest.fixture
def inventory_file(tmp_path: Path) -> Path:
    """Inventory with three clusters and three tags."""
    path = tmp_path / "clusters.yaml"
    path.write_text(INVENTORY_YAML)
    return path


def make_cluster(
    cluster_id: int,
    base_url: str = "https://kc.example",
    group_name: str | None = None,
    tag_ids=(),
    name: str | None = None,
) -> Cluster:
    return Cluster(
        id=cluster_id,
        name=name or f"cluster-{cluster_id}",
        base_url=base_url,
        realm=f"realm-{cluster_id}",
        group_name=group_name,
        tag_ids=frozenset(tag_ids),
    )


class FakeEntitySource:
    """In-memory realms: {cluster_id: {category: [entities]}}."""

    def __init__(self, realms=None, failures=None):
        self.realms = realms or {}
        self.failures = failures or {}
        self.calls = []

    async def fetch_entities(self, cluster_id, category):
        category = EntityCategory(category)
        self.calls.append((cluster_id, category))
        error = self.failures.get((cluster_id, category))
        if error is not None:
            raise error
        return list(self.realms.get(cluster_id, {}).get(category, []))


class FakeSyncer:
    """Copies source entities into the destination realm of a FakeEntitySource."""

    def __init__(self, source: FakeEntitySource, failing_keys=()):
        self.source = source
        self.failing_keys = set(failing_keys)
        self.calls = []

    async def sync_entity(self, source_id, destination_id, category, key):
        self.calls.append((source_id, destination_id, category, key))
        if key in self.failing_keys:
            raise RuntimeError(f"cannot sync {key}")
        entity = next(
            e
            for e in self.source.realms[source_id][category]
            if e.natural_key == key
        )
        destination = self.source.realms.setdefault(destination_id, {}).setdefault(
            category, []
        )
        destination[:] = [e for e in destination if e.natural_key != key] + [entity]


class FakeTagMutator:
    def __init__(self, fail_tags=()):
        self.fail_tags = set(fail_tags)
        self.calls = []

    async def assign_tags(self, cluster_ids, tag_ids):
        self.calls.append(("assign", tuple(cluster_ids), tuple(tag_ids)))
        if self.fail_tags & set(tag_ids):
            raise RuntimeError("tag service unavailable")

    async def remove_tags(self, cluster_ids, tag_ids):
        self.calls.append(("remove", tuple(cluster_ids), tuple(tag_ids)))
        if self.fail_tags & set(tag_ids):
            raise RuntimeError("tag service unavailable")


class FakeDirectory:
    def __init__(self, clusters):
        self.clusters = list(clusters)

    async def list_clusters(self):
        return list(self.clusters)


@pytest.fixture
def fake_realms():
    """Source realm 1 and destination realm 2 with a mix of statuses."""
    from kmm.reconcile.models import Role

    return FakeEntitySource(
        realms={
            1: {
                EntityCategory.ROLES: [
                    Role(name="admin", description="Administrators"),
                    Role(name="viewer", description="Read only"),
                    Role(name="auditor"),
                ],
            },
            2: {
                EntityCategory.ROLES: [
                    Role(name="admin", description="Administrators"),
                    Role(name="viewer", description="Read-only"),
                    Role(name="legacy"),
                ],
            },
        }
    )
