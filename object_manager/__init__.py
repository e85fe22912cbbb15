"""
Fluent finders over SQLAlchemy mapped classes.

Main Components:
- ObjectManager: session facade handing out finders and repositories
- ObjectFinder: chainable filter/join/order/pagination query session
- QueryBuilder / Query: mutable query parts compiled into SQLAlchemy statements
- Exceptions carrying HTTP status hints for an outer transport layer
"""

from .exceptions import (
    FinderLogicError,
    HttpStatusError,
    InvalidArgumentError,
    MappingError,
    NonUniqueResultError,
    NoResultError,
    ObjectManagerError,
    WrongFilterValueError,
)
from .manager import ObjectManager
from .query import (
    DEFAULT_PAGE_SIZE,
    DetachedResultIterator,
    EntityDescriptor,
    Hydration,
    JoinType,
    ObjectFinder,
    Query,
    QueryBuilder,
    filter_method,
)

__all__ = [
    # Main classes
    "ObjectManager",
    "ObjectFinder",
    "QueryBuilder",
    "Query",
    "DetachedResultIterator",
    "EntityDescriptor",
    "filter_method",
    # Enums and constants
    "Hydration",
    "JoinType",
    "DEFAULT_PAGE_SIZE",
    # Exceptions
    "ObjectManagerError",
    "HttpStatusError",
    "InvalidArgumentError",
    "FinderLogicError",
    "MappingError",
    "WrongFilterValueError",
    "NoResultError",
    "NonUniqueResultError",
]
