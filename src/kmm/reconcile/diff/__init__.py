"""Realm diff: field extractor and entity classifier."""

from .classifier import classify, classify_category
from .fields import SCOPE_MAPPER_FIELD_PREFIX, FieldDiff, diff_fields, set_delta

__all__ = [
    "FieldDiff",
    "SCOPE_MAPPER_FIELD_PREFIX",
    "classify",
    "classify_category",
    "diff_fields",
    "set_delta",
]
