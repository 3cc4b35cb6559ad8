"""Field-level difference extraction for a matched pair of entities.

Each entity category declares an allowlist of comparison fields
(`Entity.comparison_fields`). Three comparison semantics exist:

scalar
    Strict equality. ``None`` and ``""`` are different values: collapsing
    them would hide configuration drift.
set
    Order-independent. The field differs iff the symmetric difference is
    non-empty. Both full sides are reported, plus a `SetDelta`.
mapping
    Key-wise. Differs iff the key sets differ or any value differs; list
    values are compared as sets, anything else by equality.

A field missing on one side is treated as empty (``None`` for scalars) and a
field missing on both sides is never reported.

Clients additionally get one dynamic mapping field per client scope they
share with the other side, ``scopeMappers_<scope>``, comparing that scope's
protocol mappers by name and configuration.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from kmm.reconcile.errors import EntityCategoryError
from kmm.reconcile.models.diff import SetDelta
from kmm.reconcile.models.entities import Client, Entity, FieldKind

SCOPE_MAPPER_FIELD_PREFIX = "scopeMappers_"

# Mapper keys that are realm-local and never compared.
_VOLATILE_MAPPER_KEYS = frozenset({"id"})


@dataclass(frozen=True)
class FieldDiff:
    """Differing fields of two entities with their values on each side."""

    fields: list[str] = field(default_factory=list)
    a_values: dict[str, Any] = field(default_factory=dict)
    b_values: dict[str, Any] = field(default_factory=dict)
    deltas: dict[str, SetDelta] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.fields)


def diff_fields(a: Entity, b: Entity) -> FieldDiff:
    """Compare two entities of the same category.

    Args:
        a: Source-side entity
        b: Destination-side entity

    Returns:
        FieldDiff naming every differing field, in allowlist order followed
        by dynamic fields sorted by name.

    Raises:
        EntityCategoryError: If the entities belong to different categories.
    """
    if type(a) is not type(b):
        raise EntityCategoryError(
            f"Cannot compare {type(a).__name__} with {type(b).__name__}"
        )

    result = FieldDiff()
    for compared in a.comparison_fields:
        _compare(
            result, compared.name, compared.kind,
            getattr(a, compared.attr), getattr(b, compared.attr),
        )

    if isinstance(a, Client):
        for name, a_mappers, b_mappers in _scope_mapper_fields(a, b):
            _compare(result, name, FieldKind.MAPPING, a_mappers, b_mappers)

    return result


def _compare(result: FieldDiff, name: str, kind: FieldKind, a: Any, b: Any) -> None:
    if a is None and b is None:
        return

    if kind is FieldKind.SCALAR:
        if a != b:
            _record(result, name, a, b)
        return

    if kind is FieldKind.SET:
        delta = set_delta(a, b)
        if not delta.is_empty:
            _record(result, name, _sorted(_as_set(a)), _sorted(_as_set(b)))
            result.deltas[name] = delta
        return

    a_map = dict(a or {})
    b_map = dict(b or {})
    if _normalize_mapping(a_map) != _normalize_mapping(b_map):
        _record(result, name, a_map, b_map)


def _record(result: FieldDiff, name: str, a: Any, b: Any) -> None:
    result.fields.append(name)
    result.a_values[name] = a
    result.b_values[name] = b


def set_delta(a: Any, b: Any) -> SetDelta:
    """Split two set-valued fields into only-in-a, only-in-b and common."""
    a_set = _as_set(a)
    b_set = _as_set(b)
    return SetDelta(
        only_in_source=_sorted(a_set - b_set),
        only_in_destination=_sorted(b_set - a_set),
        common=_sorted(a_set & b_set),
    )


def _as_set(value: Any) -> set[Any]:
    if value is None:
        return set()
    if isinstance(value, (str, bytes)):
        return {value}
    return set(value)


def _sorted(values: set[Any]) -> list[Any]:
    return sorted(values, key=str)


def _normalize_mapping(mapping: Mapping[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in mapping.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            normalized[key] = frozenset(value)
        else:
            normalized[key] = value
    return normalized


def _clean_mappers(
    mappers: Mapping[str, Mapping[str, Any]] | None,
) -> dict[str, dict[str, Any]] | None:
    if mappers is None:
        return None
    return {
        name: {k: v for k, v in mapper.items() if k not in _VOLATILE_MAPPER_KEYS}
        for name, mapper in mappers.items()
    }


def _scope_mapper_fields(
    a: Client, b: Client
) -> Iterator[tuple[str, dict | None, dict | None]]:
    """Yield (field name, a mappers, b mappers) for scopes both clients use."""
    shared = (_as_set(a.default_client_scopes) & _as_set(b.default_client_scopes)) | (
        _as_set(a.optional_client_scopes) & _as_set(b.optional_client_scopes)
    )
    a_scopes = a.scope_mappers or {}
    b_scopes = b.scope_mappers or {}
    for scope in sorted(shared):
        yield (
            f"{SCOPE_MAPPER_FIELD_PREFIX}{scope}",
            _clean_mappers(a_scopes.get(scope)),
            _clean_mappers(b_scopes.get(scope)),
        )
