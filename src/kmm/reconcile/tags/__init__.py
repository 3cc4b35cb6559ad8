"""Bulk tag planning."""

from .planner import plan_tag_changes
from .selection import TagSelection, TagState

__all__ = ["TagSelection", "TagState", "plan_tag_changes"]
