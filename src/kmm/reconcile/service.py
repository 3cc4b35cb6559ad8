"""Reconciliation orchestration.

Wires the pure diff, topology and tag planning functions to the I/O
collaborators: entity fetches, entity sync, tag mutation and the cluster
directory. Every collaborator method is a coroutine.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from kmm.reconcile.audit import AuditLogger
from kmm.reconcile.diff import classify_category
from kmm.reconcile.errors import ReconcileError, SyncError, UnknownClusterError
from kmm.reconcile.models.clusters import Cluster
from kmm.reconcile.models.diff import CategoryDiff
from kmm.reconcile.models.entities import Entity, EntityCategory
from kmm.reconcile.models.tags import TagOperation, TagOperationPlan
from kmm.reconcile.tags import plan_tag_changes
from kmm.reconcile.topology import Topology, build_topology

logger = logging.getLogger(__name__)

ALL_CATEGORIES: tuple[EntityCategory, ...] = tuple(EntityCategory)


# -------------------------------------------------------------------------
# Collaborators
# -------------------------------------------------------------------------


class EntitySource(Protocol):
    async def fetch_entities(
        self, cluster_id: int, category: EntityCategory
    ) -> list[Entity]: ...


class EntitySyncer(Protocol):
    async def sync_entity(
        self,
        source_id: int,
        destination_id: int,
        category: EntityCategory,
        key: str,
    ) -> None: ...


class TagMutator(Protocol):
    async def assign_tags(self, cluster_ids: list[int], tag_ids: list[int]) -> None: ...

    async def remove_tags(self, cluster_ids: list[int], tag_ids: list[int]) -> None: ...


class ClusterDirectory(Protocol):
    async def list_clusters(self) -> list[Cluster]: ...


# -------------------------------------------------------------------------
# Results
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class FetchFailure:
    """A category fetch that was replaced by an empty snapshot."""

    side: str
    cluster_id: int
    category: EntityCategory
    error: str


@dataclass
class ComparisonResult:
    """Per-category diff of two realms."""

    source_id: int
    destination_id: int
    two_way: bool
    diffs: dict[EntityCategory, CategoryDiff] = field(default_factory=dict)
    degraded: list[FetchFailure] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded)

    def degraded_categories(self) -> set[EntityCategory]:
        return {f.category for f in self.degraded}

    def summary(self) -> str:
        """Get a human-readable summary of the comparison."""
        lines = []
        for category, diff in self.diffs.items():
            counts = ", ".join(f"{s.value}={n}" for s, n in diff.counts().items() if n)
            lines.append(f"  {category.value}: {counts or 'empty'}")
        for failure in self.degraded:
            lines.append(
                f"  ! {failure.side} {failure.category.value} unavailable: {failure.error}"
            )
        return (
            f"Cluster {self.source_id} -> {self.destination_id}"
            f" ({'two-way' if self.two_way else 'one-way'})\n" + "\n".join(lines)
        )


@dataclass
class SyncOutcome:
    """Result of syncing several keys of one category."""

    category: EntityCategory
    synced: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    comparison: ComparisonResult | None = None

    @property
    def success(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class TagBatchFailure:
    action: str
    operation: TagOperation
    error: str


@dataclass
class TagApplyResult:
    """Outcome of submitting a tag plan."""

    applied: list[tuple[str, TagOperation]] = field(default_factory=list)
    failures: list[TagBatchFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures


# -------------------------------------------------------------------------
# Change notification
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class ChangeEvent:
    """Entities or tags changed on the given clusters; views should refresh."""

    kind: str
    cluster_ids: frozenset[int]
    category: EntityCategory | None = None


ChangeListener = Callable[[ChangeEvent], Any]


class ChangeNotifier:
    """Explicitly registered observers of reconciliation changes."""

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Change listener failed for %s event", event.kind)


# -------------------------------------------------------------------------
# Service
# -------------------------------------------------------------------------


class ReconciliationService:
    """Compare realms, sync entities and apply tag plans."""

    def __init__(
        self,
        source: EntitySource,
        syncer: EntitySyncer | None = None,
        tags: TagMutator | None = None,
        directory: ClusterDirectory | None = None,
        notifier: ChangeNotifier | None = None,
        audit: AuditLogger | None = None,
    ):
        self._source = source
        self._syncer = syncer
        self._tags = tags
        self._directory = directory
        self.notifier = notifier or ChangeNotifier()
        self._audit = audit or AuditLogger(enabled=False)

    # ---------------------------------------------------------------------
    # Comparison
    # ---------------------------------------------------------------------

    async def compare(
        self,
        source_id: int,
        destination_id: int,
        two_way: bool = True,
        categories: Iterable[EntityCategory | str] = ALL_CATEGORIES,
    ) -> ComparisonResult:
        """Fetch both realms concurrently and classify every category.

        A failed fetch degrades that side of that category to an empty list
        and is reported in `ComparisonResult.degraded`.
        """
        cats = [EntityCategory(c) for c in categories]
        await self._check_clusters(source_id, destination_id)

        fetches = []
        for category in cats:
            fetches.append(self._fetch("source", source_id, category))
            fetches.append(self._fetch("destination", destination_id, category))
        results = await asyncio.gather(*fetches)

        result = ComparisonResult(
            source_id=source_id, destination_id=destination_id, two_way=two_way
        )
        for i, category in enumerate(cats):
            source_entities, source_failure = results[2 * i]
            destination_entities, destination_failure = results[2 * i + 1]
            for failure in (source_failure, destination_failure):
                if failure is not None:
                    result.degraded.append(failure)
            result.diffs[category] = classify_category(
                category, source_entities, destination_entities, two_way=two_way
            )

        logger.debug(
            "Compared cluster %s -> %s (%d categories, %d degraded)",
            source_id,
            destination_id,
            len(cats),
            len(result.degraded),
        )
        return result

    async def _fetch(
        self, side: str, cluster_id: int, category: EntityCategory
    ) -> tuple[list[Entity], FetchFailure | None]:
        try:
            return list(await self._source.fetch_entities(cluster_id, category)), None
        except Exception as e:
            logger.warning(
                "Fetching %s from %s cluster %s failed, using empty snapshot: %s",
                category.value,
                side,
                cluster_id,
                e,
            )
            self._audit.log_fetch_degraded(cluster_id, category.value, str(e))
            return [], FetchFailure(
                side=side, cluster_id=cluster_id, category=category, error=str(e)
            )

    # ---------------------------------------------------------------------
    # Sync
    # ---------------------------------------------------------------------

    async def sync_entity(
        self,
        source_id: int,
        destination_id: int,
        category: EntityCategory | str,
        key: str,
    ) -> None:
        """Push one entity from source to destination.

        Raises:
            SyncError: If the sync collaborator fails.
        """
        category = EntityCategory(category)
        await self._check_clusters(source_id, destination_id)
        await self._sync_one(source_id, destination_id, category, key)
        self.notifier.publish(
            ChangeEvent(
                kind="entities",
                cluster_ids=frozenset({destination_id}),
                category=category,
            )
        )

    async def sync(
        self,
        source_id: int,
        destination_id: int,
        category: EntityCategory | str,
        keys: Sequence[str],
        two_way: bool = True,
    ) -> SyncOutcome:
        """Sync each key independently, then recompute the full comparison.

        Keys are synced one after the other. A failure does not stop the
        remaining keys and earlier successes are kept.
        """
        category = EntityCategory(category)
        await self._check_clusters(source_id, destination_id)
        outcome = SyncOutcome(category=category)

        for key in keys:
            try:
                await self._sync_one(source_id, destination_id, category, key)
            except SyncError as e:
                outcome.failures[key] = str(e)
            else:
                outcome.synced.append(key)

        if outcome.synced:
            self.notifier.publish(
                ChangeEvent(
                    kind="entities",
                    cluster_ids=frozenset({destination_id}),
                    category=category,
                )
            )

        outcome.comparison = await self.compare(
            source_id, destination_id, two_way=two_way
        )
        return outcome

    async def _sync_one(
        self,
        source_id: int,
        destination_id: int,
        category: EntityCategory,
        key: str,
    ) -> None:
        if self._syncer is None:
            raise SyncError("No sync collaborator configured", category=category.value, key=key)

        try:
            await self._syncer.sync_entity(source_id, destination_id, category, key)
        except Exception as e:
            logger.warning("Sync of %s %r failed: %s", category.value, key, e)
            self._audit.log_sync(
                source_id, destination_id, category.value, key, success=False, error=str(e)
            )
            if isinstance(e, SyncError):
                raise
            raise SyncError(
                f"Failed to sync {category.value} {key!r}: {e}",
                category=category.value,
                key=key,
            ) from e

        logger.info(
            "Synced %s %r from cluster %s to %s",
            category.value,
            key,
            source_id,
            destination_id,
        )
        self._audit.log_sync(source_id, destination_id, category.value, key, success=True)

    # ---------------------------------------------------------------------
    # Topology and tags
    # ---------------------------------------------------------------------

    async def list_clusters(self) -> list[Cluster]:
        if self._directory is None:
            raise ReconcileError("No cluster directory configured")
        return list(await self._directory.list_clusters())

    async def _check_clusters(self, *cluster_ids: int) -> None:
        # Without a directory, ids are the collaborators' business
        if self._directory is None:
            return
        known = {c.id for c in await self._directory.list_clusters()}
        for cluster_id in cluster_ids:
            if cluster_id not in known:
                raise UnknownClusterError(cluster_id)

    async def topology(self) -> Topology:
        return build_topology(await self.list_clusters())

    async def plan_tags(
        self,
        cluster_ids: Iterable[int],
        target_tag_ids: Iterable[int],
        managed_tag_ids: Iterable[int] | None = None,
    ) -> TagOperationPlan:
        """Plan tag changes for directory clusters.

        Raises:
            UnknownClusterError: If a cluster id is not in the directory.
        """
        by_id = {c.id: c for c in await self.list_clusters()}
        selected = []
        for cluster_id in cluster_ids:
            if cluster_id not in by_id:
                raise UnknownClusterError(cluster_id)
            selected.append(by_id[cluster_id])
        return plan_tag_changes(target_tag_ids, selected, managed_tag_ids)

    async def apply_tag_plan(self, plan: TagOperationPlan) -> TagApplyResult:
        """Submit every operation of the plan concurrently.

        Failed batches are reported, never retried. Nothing is assumed about
        the resulting tag state: callers re-read the directory.
        """
        if self._tags is None:
            raise ReconcileError("No tag mutator configured")

        batches: list[tuple[str, TagOperation]] = [
            ("assign", op) for op in plan.assign
        ] + [("remove", op) for op in plan.remove]

        calls = []
        for action, op in batches:
            mutate = self._tags.assign_tags if action == "assign" else self._tags.remove_tags
            calls.append(mutate(sorted(op.cluster_ids), sorted(op.tag_ids)))
        results = await asyncio.gather(*calls, return_exceptions=True)

        outcome = TagApplyResult()
        for (action, op), res in zip(batches, results):
            if isinstance(res, BaseException):
                logger.warning("Tag %s batch %s failed: %s", action, sorted(op.tag_ids), res)
                self._audit.log_tag_batch(action, op, success=False, error=str(res))
                outcome.failures.append(
                    TagBatchFailure(action=action, operation=op, error=str(res))
                )
            else:
                self._audit.log_tag_batch(action, op, success=True)
                outcome.applied.append((action, op))

        if outcome.applied:
            touched = frozenset().union(*(op.cluster_ids for _, op in outcome.applied))
            self.notifier.publish(ChangeEvent(kind="tags", cluster_ids=touched))

        return outcome
