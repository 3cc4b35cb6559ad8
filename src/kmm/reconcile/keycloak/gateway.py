"""Entity source and sync collaborator backed by the Keycloak admin API."""

from __future__ import annotations

import logging
from collections.abc import Callable

import httpx

from kmm.reconcile.directory import FileClusterDirectory
from kmm.reconcile.errors import SyncError
from kmm.reconcile.keycloak.client import KeycloakAdminClient
from kmm.reconcile.keycloak.settings import KeycloakSettings
from kmm.reconcile.models.entities import Entity, EntityCategory

logger = logging.getLogger(__name__)


class KeycloakGateway:
    """Resolve cluster ids through the directory and talk to their realms."""

    def __init__(
        self,
        directory: FileClusterDirectory,
        timeout: float | None = None,
        transport_factory: Callable[[], httpx.AsyncBaseTransport] | None = None,
    ):
        self._directory = directory
        self._timeout = timeout
        self._transport_factory = transport_factory

    def _admin_client(self, cluster_id: int) -> KeycloakAdminClient:
        cluster = self._directory.get_config(cluster_id)
        settings = KeycloakSettings.for_cluster(cluster, timeout=self._timeout)
        transport = self._transport_factory() if self._transport_factory else None
        return KeycloakAdminClient(settings, transport=transport)

    async def fetch_entities(
        self, cluster_id: int, category: EntityCategory
    ) -> list[Entity]:
        """Fetch one category of a cluster's realm.

        A category the realm does not list at all yields an empty list. Any
        other failure, a missing sub-resource included, propagates so the
        caller can report the category as degraded.
        """
        category = EntityCategory(category)
        async with self._admin_client(cluster_id) as kc:
            if category is EntityCategory.ROLES:
                return list(await kc.fetch_roles())
            if category is EntityCategory.CLIENTS:
                return list(await kc.fetch_clients())
            if category is EntityCategory.GROUPS:
                return list(await kc.fetch_groups())
            return list(await kc.fetch_users())

    async def sync_entity(
        self,
        source_id: int,
        destination_id: int,
        category: EntityCategory,
        key: str,
    ) -> None:
        """Push the source definition of one entity to the destination."""
        category = EntityCategory(category)

        async with self._admin_client(source_id) as source:
            entity = await _fetch_one(source, category, key)
        if entity is None:
            raise SyncError(
                f"{category.value} {key!r} not found in source cluster {source_id}",
                category=category.value,
                key=key,
            )

        logger.debug(
            "Syncing %s %r from cluster %s to %s", category.value, key, source_id, destination_id
        )
        async with self._admin_client(destination_id) as destination:
            if category is EntityCategory.ROLES:
                await destination.sync_role(entity)
            elif category is EntityCategory.CLIENTS:
                await destination.sync_client(entity)
            elif category is EntityCategory.GROUPS:
                await destination.sync_group(entity)
            else:
                await destination.sync_user(entity)


async def _fetch_one(
    kc: KeycloakAdminClient, category: EntityCategory, key: str
) -> Entity | None:
    if category is EntityCategory.ROLES:
        return await kc.fetch_role(key)
    if category is EntityCategory.CLIENTS:
        return await kc.fetch_client(key)
    if category is EntityCategory.GROUPS:
        return await kc.fetch_group(key)
    return await kc.fetch_user(key)
