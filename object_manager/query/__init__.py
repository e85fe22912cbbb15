"""
Query module: finders, the query builder and entity metadata.

Main Components:
- ObjectFinder: stateful, reusable query session over one mapped class
- QueryBuilder: textual query parts compiled into SQLAlchemy statements
- EntityDescriptor: identifier, fields and associations of a mapped class
- Schemas: hydration modes, join kinds and filter value classification
"""

from .builder import Query, QueryBuilder
from .finder import DetachedResultIterator, DetachedState, ObjectFinder, filter_method
from .metadata import AssociationMapping, EntityDescriptor, get_entity_descriptor
from .schemas import (
    DEFAULT_PAGE_SIZE,
    DETACHED_PAGE_SIZE,
    LEGACY_ALIAS_PREFIX,
    FilterValueKind,
    Hydration,
    JoinKind,
    JoinType,
    Parameter,
    resolve_value_kind,
)

__all__ = [
    # Main classes
    "ObjectFinder",
    "QueryBuilder",
    "Query",
    "DetachedResultIterator",
    "filter_method",
    # Metadata
    "EntityDescriptor",
    "AssociationMapping",
    "get_entity_descriptor",
    # Types
    "Hydration",
    "JoinKind",
    "JoinType",
    "FilterValueKind",
    "DetachedState",
    "Parameter",
    "resolve_value_kind",
    # Constants
    "DEFAULT_PAGE_SIZE",
    "DETACHED_PAGE_SIZE",
    "LEGACY_ALIAS_PREFIX",
]
