"""Entity diff classifier.

Classifies every natural key of two entity snapshots into one of the four
`DiffStatus` values. Keys are compared by exact, case-sensitive equality:
identity-provider keys are case-sensitive.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from kmm.reconcile.errors import EntityCategoryError
from kmm.reconcile.models.diff import CategoryDiff, DiffRecord, DiffStatus
from kmm.reconcile.models.entities import Entity, EntityCategory, entity_model

from .fields import diff_fields

logger = logging.getLogger(__name__)


def classify(
    source_entities: Iterable[Entity],
    destination_entities: Iterable[Entity],
    two_way: bool = True,
) -> list[DiffRecord]:
    """Classify entity keys across source and destination.

    Args:
        source_entities: Snapshot of the source realm
        destination_entities: Snapshot of the destination realm
        two_way: If False, keys present only in the destination are omitted

    Returns:
        One DiffRecord per key. Order is not significant: look records up
        by key instead of relying on position.
    """
    source = _index(source_entities, "source")
    destination = _index(destination_entities, "destination")

    records: list[DiffRecord] = []

    for key, entity in source.items():
        other = destination.get(key)
        if other is None:
            records.append(
                DiffRecord(entity=entity, status=DiffStatus.MISSING_IN_DESTINATION)
            )
            continue

        diff = diff_fields(entity, other)
        if diff:
            records.append(
                DiffRecord(
                    entity=entity,
                    status=DiffStatus.DIFFERENT_CONFIG,
                    differences=list(diff.fields),
                    source_value=dict(diff.a_values),
                    destination_value=dict(diff.b_values),
                    deltas=dict(diff.deltas) or None,
                )
            )
        else:
            records.append(DiffRecord(entity=entity, status=DiffStatus.MATCH))

    if two_way:
        for key, entity in destination.items():
            if key not in source:
                records.append(
                    DiffRecord(entity=entity, status=DiffStatus.MISSING_IN_SOURCE)
                )

    return records


def classify_category(
    category: EntityCategory | str,
    source_entities: Sequence[Entity],
    destination_entities: Sequence[Entity],
    two_way: bool = True,
) -> CategoryDiff:
    """Classify one category, checking every entity belongs to it."""
    category = EntityCategory(category)
    model = entity_model(category)
    for entity in (*source_entities, *destination_entities):
        if not isinstance(entity, model):
            raise EntityCategoryError(
                f"{type(entity).__name__} is not a {category.value} entity"
            )

    return CategoryDiff(
        category=category,
        records=classify(source_entities, destination_entities, two_way=two_way),
    )


def _index(entities: Iterable[Entity], side: str) -> dict[str, Entity]:
    index: dict[str, Entity] = {}
    for entity in entities:
        key = entity.natural_key
        if key in index:
            logger.warning("Duplicate key %r in %s snapshot, keeping first", key, side)
            continue
        index[key] = entity
    return index
