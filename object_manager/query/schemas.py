"""
Types shared by the finder and the query builder.

This module defines the enums, constants and small value objects used while
accumulating a query: hydration modes, join kinds, the classification of
filter values and bound parameters.
"""

from typing import Any, Collection, Mapping, Optional
from dataclasses import dataclass
from enum import Enum

# Page size applied by offset_page_result() when no limit was set.
DEFAULT_PAGE_SIZE = 30

# Upper bound of rows fetched per page while streaming detached results.
DETACHED_PAGE_SIZE = 100

# Legacy "current alias" prefix rewritten by where().
LEGACY_ALIAS_PREFIX = "t."


class Hydration(str, Enum):
    """Shape of the returned results."""

    OBJECT = "object"  # Mapped instances (or rows of them for mixed selects)
    ARRAY = "array"  # Plain dicts of column attributes


class JoinKind(str, Enum):
    """Kind of join applied to the query builder."""

    INNER = "INNER"
    LEFT = "LEFT"


class JoinType(str, Enum):
    """How a join condition combines with the relationship join."""

    WITH = "WITH"  # ANDed to the relationship's own condition
    ON = "ON"  # Replaces the relationship's own condition


class FilterValueKind(str, Enum):
    """Classification of a filter value, driving the handler call shape."""

    EMPTY = "empty"  # None or "" -> handler()
    SCALAR = "scalar"  # handler(value)
    LIST = "list"  # handler(*value)
    MAPPING = "mapping"  # handler(value)


def resolve_value_kind(value: Any) -> FilterValueKind:
    """Classify a filter value."""
    if value is None or (isinstance(value, str) and len(value) == 0):
        return FilterValueKind.EMPTY
    if isinstance(value, Mapping):
        return FilterValueKind.MAPPING
    if isinstance(value, (str, bytes)):
        return FilterValueKind.SCALAR
    if isinstance(value, (list, tuple, set, frozenset)):
        return FilterValueKind.LIST
    return FilterValueKind.SCALAR


def is_list_value(value: Any) -> bool:
    """Check if a bound value must be expanded into an IN list."""
    return isinstance(value, Collection) and not isinstance(value, (str, bytes, Mapping))


@dataclass(frozen=True)
class Parameter:
    """A value bound to a named placeholder."""

    name: str
    value: Any

    def is_list(self) -> bool:
        """Check if this parameter expands into an IN list."""
        return is_list_value(self.value)


@dataclass(frozen=True)
class JoinDefinition:
    """A join recorded on the query builder."""

    kind: JoinKind
    join: str
    alias: str
    condition_type: Optional[JoinType] = None
    condition: Optional[str] = None
    index_by: Optional[str] = None
