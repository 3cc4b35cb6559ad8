"""Diff records produced by comparing two realms."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, model_validator

from .entities import Entity, EntityCategory


class DiffStatus(str, Enum):
    """Classification of one natural key across source and destination."""

    MATCH = "match"
    MISSING_IN_DESTINATION = "missing_in_destination"
    MISSING_IN_SOURCE = "missing_in_source"
    DIFFERENT_CONFIG = "different_config"


class SetDelta(BaseModel):
    """Element-level view of a differing set-valued field.

    only_in_source elements are added to the destination on sync,
    only_in_destination elements are kept there, common ones are shown
    for context.
    """

    model_config = ConfigDict(frozen=True)

    only_in_source: list[Any] = Field(default_factory=list)
    only_in_destination: list[Any] = Field(default_factory=list)
    common: list[Any] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.only_in_source or self.only_in_destination)


class DiffRecord(BaseModel):
    """Status of one entity key, with per-field values when it differs."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    entity: SerializeAsAny[Entity]
    status: DiffStatus
    differences: list[str] | None = None
    source_value: dict[str, Any] | None = Field(default=None, alias="sourceValue")
    destination_value: dict[str, Any] | None = Field(
        default=None, alias="destinationValue"
    )
    deltas: dict[str, SetDelta] | None = None

    @model_validator(mode="after")
    def _check_differences(self) -> "DiffRecord":
        if self.status is DiffStatus.DIFFERENT_CONFIG:
            if not self.differences:
                raise ValueError("different_config requires at least one difference")
            names = set(self.differences)
            if self.source_value is None or set(self.source_value) != names:
                raise ValueError("sourceValue must cover exactly the differing fields")
            if self.destination_value is None or set(self.destination_value) != names:
                raise ValueError(
                    "destinationValue must cover exactly the differing fields"
                )
            if self.deltas and not set(self.deltas) <= names:
                raise ValueError("deltas may only describe differing fields")
        elif (
            self.differences is not None
            or self.source_value is not None
            or self.destination_value is not None
            or self.deltas is not None
        ):
            raise ValueError(f"{self.status.value} records carry no field differences")
        return self

    @property
    def key(self) -> str:
        return self.entity.natural_key


class CategoryDiff(BaseModel):
    """All diff records of one entity category."""

    category: EntityCategory
    records: list[DiffRecord] = Field(default_factory=list)

    def by_key(self) -> dict[str, DiffRecord]:
        """Index records by natural key."""
        return {record.key: record for record in self.records}

    def status_of(self, key: str) -> DiffStatus | None:
        """Status of a key, or None when the key is not part of the result."""
        record = self.by_key().get(key)
        return record.status if record else None

    def with_status(self, status: DiffStatus) -> list[DiffRecord]:
        return [r for r in self.records if r.status is status]

    def counts(self) -> dict[DiffStatus, int]:
        """Number of records per status (every status present)."""
        counts = {status: 0 for status in DiffStatus}
        for record in self.records:
            counts[record.status] += 1
        return counts
