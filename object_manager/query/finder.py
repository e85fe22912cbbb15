"""
Fluent finder bound to one mapped class.

A finder accumulates filters, projections, joins, grouping, ordering,
parameters and pagination across chained calls, then compiles them into a
single Query on a terminal call (find, find_all, count, query, ...). Every
terminal call clears the finder, so the same instance can be reused for an
unrelated query right after.

Filters are resolved by name: methods decorated with ``@filter_method`` form
the finder's filter table, anything else falls back to equality/IN filtering
on the entity's mapped fields, and unknown names are ignored.

Example:
    class UserFinder(ObjectFinder[User]):
        @filter_method
        def status(self, status: str = "active"):
            return self.where("u.status = :status", status)

    users = UserFinder(session, User, "u").filter({"status": "", "role": "admin"}).find_all()
"""

import functools
import logging
import re
import warnings
from copy import copy
from enum import Enum
from typing import Any, Callable, Dict, Generic, Iterator, List, Mapping, Optional, Set, Type, TypeVar, Union
from uuid import UUID

from pydantic import ValidationError, validate_call
from sqlalchemy.orm import Session

from object_manager.exceptions import (
    FinderLogicError,
    InvalidArgumentError,
    MappingError,
    NoResultError,
    WrongFilterValueError,
)
from object_manager.query.builder import Query, QueryBuilder, is_mapped_instance
from object_manager.query.metadata import EntityDescriptor, get_entity_descriptor
from object_manager.query.schemas import (
    DEFAULT_PAGE_SIZE,
    DETACHED_PAGE_SIZE,
    FilterValueKind,
    Hydration,
    JoinKind,
    JoinType,
    Parameter,
    resolve_value_kind,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_WHERE_PLACEHOLDER = re.compile(r":[A-Za-z0-9]+")
_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def filter_method(name: Union[str, Callable[..., Any], None] = None) -> Any:
    """
    Register a finder method as a named filter.

    Usable bare (``@filter_method``, registered under the method name) or with
    the public filter name (``@filter_method("createdAfter")``). Arguments are
    validated against the method's annotations, so a value of the wrong shape
    surfaces as WrongFilterValueError from filter_field().
    """

    def decorate(func: Callable[..., Any], filter_name: Optional[str] = None) -> Callable[..., Any]:
        validated = validate_call(func)

        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            return validated(self, *args, **kwargs)

        wrapper.__filter_name__ = filter_name or func.__name__
        return wrapper

    if callable(name):
        return decorate(name)

    return functools.partial(decorate, filter_name=name)


class ObjectFinder(Generic[T]):
    """Chainable query session over one mapped class."""

    # Public filter name -> method name, built per class by __init_subclass__
    _filters: Dict[str, str] = {}

    # Deprecated: when set (e.g. to LEGACY_ALIAS_PREFIX), where() rewrites this
    # prefix to the finder alias.
    legacy_alias_prefix: Optional[str] = None

    def __init__(self, session: Session, entity: Type[T], alias: Optional[str] = None):
        self.session = session
        self.entity = entity
        self.class_metadata: EntityDescriptor = get_entity_descriptor(entity)
        self.alias = alias or self.class_metadata.table_name

        self._query_builder: Optional[QueryBuilder] = None
        self._select: List[str] = []
        self._join_stack: Set[str] = set()
        self._group_by_stack: Set[str] = set()
        self._parameter_index = 0
        self._offset_result: Optional[int] = None
        self._max_result: Optional[int] = None

    def __init_subclass__(cls, **kwargs: Any):
        super().__init_subclass__(**kwargs)
        cls._filters = cls._collect_filters()

    @classmethod
    def _collect_filters(cls) -> Dict[str, str]:
        filters: Dict[str, str] = {}
        for klass in reversed(cls.__mro__):
            for attribute, value in vars(klass).items():
                name = getattr(value, "__filter_name__", None)
                if name:
                    filters[name] = attribute
        return filters

    @classmethod
    def get_filter_names(cls) -> List[str]:
        return sorted(cls._filters)

    def __copy__(self) -> "ObjectFinder[T]":
        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        clone._select = list(self._select)
        clone._join_stack = set(self._join_stack)
        clone._group_by_stack = set(self._group_by_stack)
        if self._query_builder is not None:
            clone._query_builder = copy(self._query_builder)
        return clone

    # ===== FILTERS =====

    def filter(self, search: Optional[Mapping[str, Any]] = None) -> "ObjectFinder[T]":
        """Apply filter_field() to every (name, value) pair."""
        for name, value in (search or {}).items():
            self.filter_field(name, value)
        return self

    def filter_field(self, name: str, value: Any) -> "ObjectFinder[T]":
        """
        Apply one named filter.

        A registered filter method is called with a shape that depends on the
        value: empty (None or "") -> no arguments, list -> spread positionally,
        mapping or scalar -> one argument. Other names filter on the entity
        field of that name, or are ignored when there is no such field.
        """
        method = self._filters.get(name)
        if method is None:
            self._filter_entity_field(name, value)
            return self

        handler = getattr(self, method)
        kind = resolve_value_kind(value)
        try:
            if kind is FilterValueKind.EMPTY:
                handler()
            elif kind is FilterValueKind.LIST:
                handler(*value)
            else:
                handler(value)
        except (TypeError, ValidationError) as exc:
            raise WrongFilterValueError(name) from exc

        return self

    def _filter_entity_field(self, field: str, value: Any) -> None:
        metadata = self.class_metadata
        if not metadata.has_field(field) and not metadata.has_association(field):
            logger.debug("Ignoring unknown filter '%s' on %s", field, metadata.name)
            return

        association = metadata.association_mappings.get(field)
        if association is not None:
            if association.local_column is None:
                logger.debug("Ignoring filter on collection association '%s' of %s", field, metadata.name)
                return
            value = self._association_value(value, association.remote_attribute)

        kind = resolve_value_kind(value)
        if kind is FilterValueKind.EMPTY:
            return

        column = f"{self.get_alias()}.{metadata.column_name(field)}"
        parameter = self.get_parameter_name()

        if kind is FilterValueKind.LIST or kind is FilterValueKind.MAPPING:
            values = list(value.values()) if kind is FilterValueKind.MAPPING else list(value)
            self.query_builder().and_where(f"{column} IN :{parameter}").set_parameter(parameter, values)
        else:
            self.query_builder().and_where(f"{column} = :{parameter}").set_parameter(parameter, value)

    @staticmethod
    def _association_value(value: Any, remote_attribute: Optional[str]) -> Any:
        """Reduce mapped instances to the value their foreign key points at."""

        def reduce(item: Any) -> Any:
            if remote_attribute is not None and is_mapped_instance(item):
                return getattr(item, remote_attribute)
            return item

        if isinstance(value, (list, tuple, set, frozenset)):
            return [reduce(item) for item in value]
        return reduce(value)

    # ===== PAGINATION =====

    @filter_method
    def offset_result(self, offset_result: Optional[int] = None):
        self._offset_result = offset_result
        return self

    @filter_method
    def max_result(self, max_result: Optional[int] = None):
        self._max_result = max_result
        return self

    @filter_method
    def offset_page_result(self, page: int, max_result: Optional[int] = None):
        """
        Page through results, pages starting at 1.

        The limit defaults to ``max_result`` (or DEFAULT_PAGE_SIZE) only when no
        limit was set before. The offset is ``abs(page - 1) * limit``, so page 0 is
        the first page too.
        """
        if self._max_result is None:
            self.max_result(max_result if max_result is not None else DEFAULT_PAGE_SIZE)

        self._offset_result = abs(page - 1) * self._max_result
        return self

    def get_offset_result(self) -> Optional[int]:
        return self._offset_result

    def get_max_result(self) -> Optional[int]:
        return self._max_result

    # ===== PROJECTION / GROUPING / ORDERING =====

    def select(self, *fields: str) -> "ObjectFinder[T]":
        self._select = [self.get_field_name(field) for field in fields]
        self.query_builder().select(self._select)
        return self

    def add_select(self, *fields: str) -> "ObjectFinder[T]":
        select = [self.get_field_name(field) for field in fields]
        self._select.extend(select)
        self.query_builder().add_select(select)
        return self

    def group_by(self, *fields: str) -> "ObjectFinder[T]":
        for field in fields:
            field = self.get_field_name(field)
            if field in self._group_by_stack:
                continue

            self._group_by_stack.add(field)
            self.query_builder().add_group_by(field)

        return self

    @filter_method
    def order(self, sort: Optional[str] = None, direction: Optional[str] = None):
        """Order by ``sort``; without arguments, order by the identifier."""
        if sort is None:
            identifier = [self.get_field_name(field) for field in self.class_metadata.identifier]
            self.query_builder().order_by(identifier[0], direction)
            for field in identifier[1:]:
                self.query_builder().add_order_by(field, direction)
            return self

        self.query_builder().order_by(self.get_field_name(sort), direction)
        return self

    # ===== JOINS =====

    def join(
        self,
        join: str,
        alias: str,
        condition_type: Optional[Union[JoinType, str]] = None,
        condition: Optional[str] = None,
        index_by: Optional[str] = None,
    ) -> "ObjectFinder[T]":
        return self.add_join(JoinKind.INNER, join, alias, condition_type, condition, index_by)

    def left_join(
        self,
        join: str,
        alias: str,
        condition_type: Optional[Union[JoinType, str]] = None,
        condition: Optional[str] = None,
        index_by: Optional[str] = None,
    ) -> "ObjectFinder[T]":
        return self.add_join(JoinKind.LEFT, join, alias, condition_type, condition, index_by)

    def add_join(
        self,
        kind: Union[JoinKind, str],
        join: str,
        alias: str,
        condition_type: Optional[Union[JoinType, str]] = None,
        condition: Optional[str] = None,
        index_by: Optional[str] = None,
    ) -> "ObjectFinder[T]":
        """Join once per alias; repeated aliases are ignored."""
        if alias in self._join_stack:
            return self

        if kind == JoinKind.LEFT:
            self.query_builder().left_join(join, alias, condition_type, condition, index_by)
        elif kind == JoinKind.INNER:
            self.query_builder().join(join, alias, condition_type, condition, index_by)
        else:
            raise FinderLogicError(f"Wrong join type '{kind}'")

        self._join_stack.add(alias)
        return self

    # ===== CONDITIONS / PARAMETERS =====

    def where(self, condition: str, *parameters: Any) -> "ObjectFinder[T]":
        """
        AND a raw condition to the query.

        Positional values bind the distinct ``:name`` placeholders of the
        condition in order of first appearance. A placeholder without a
        positional value must have been bound before.
        """
        placeholders = list(dict.fromkeys(_WHERE_PLACEHOLDER.findall(condition)))

        for index, placeholder in enumerate(placeholders):
            if index >= len(parameters):
                if self.get_parameter(placeholder) is None:
                    raise InvalidArgumentError(f"Missing argument parameters with name {placeholder.lstrip(':')}")
                continue

            self.set_parameter(placeholder, parameters[index])

        self.query_builder().and_where(self._rewrite_legacy_alias(condition))
        return self

    def _rewrite_legacy_alias(self, condition: str) -> str:
        prefix = self.legacy_alias_prefix
        if not prefix or prefix == f"{self.get_alias()}.":
            return condition

        rewritten = re.sub(rf"(?<![\w.]){re.escape(prefix)}", f"{self.get_alias()}.", condition)
        if rewritten != condition:
            warnings.warn(
                f"Rewriting '{prefix}' to the finder alias in where() is deprecated, use '{self.get_alias()}.'",
                DeprecationWarning,
                stacklevel=3,
            )
        return rewritten

    def set_parameter(self, key: str, value: Any) -> "ObjectFinder[T]":
        self.query_builder().set_parameter(key.strip(":"), value)
        return self

    def get_parameter(self, key: str) -> Optional[Parameter]:
        return self.query_builder().get_parameter(key.strip(":"))

    def context_limitation(self) -> "ObjectFinder[T]":
        """Hook applied to every new query; override to restrict results (tenant, owner, ...)."""
        return self

    # ===== TERMINAL OPERATIONS =====

    def find_by_uuid(self, uuid: UUID, hydration: Optional[Hydration] = None) -> Optional[T]:
        if not self.class_metadata.has_field("uuid"):
            raise FinderLogicError(f"{self.class_metadata.name} does not have uuid field")

        return self.find_by({"uuid": str(uuid)}, hydration)

    def find(self, id: Any, hydration: Optional[Hydration] = None) -> Optional[T]:
        """Find by identifier value, identifier mapping or UUID."""
        if isinstance(id, UUID):
            return self.find_by_uuid(id, hydration)
        if isinstance(id, str) and _UUID.match(id):
            return self.find_by_uuid(UUID(id), hydration)

        return self.filter(self._sorted_identifier(id)).query().get_one_or_null_result(hydration)

    def _sorted_identifier(self, id: Any) -> Dict[str, Any]:
        metadata = self.class_metadata

        if isinstance(id, tuple) and len(id) == len(metadata.identifier):
            id = dict(zip(metadata.identifier, id))
        elif not isinstance(id, Mapping):
            if metadata.is_identifier_composite:
                raise InvalidArgumentError(
                    f"Binding an entity with a composite primary key to a query is not supported, "
                    f"pass a mapping of {', '.join(metadata.identifier)}"
                )
            id = {metadata.identifier[0]: id}

        remaining = dict(id)
        sorted_id: Dict[str, Any] = {}
        for identifier in metadata.identifier:
            if remaining.get(identifier) is None:
                raise MappingError(f"The identifier {identifier} is missing for a query of {metadata.name}")

            sorted_id[identifier] = remaining.pop(identifier)

        if remaining:
            raise MappingError(
                f"Unrecognized identifier fields: '{', '.join(remaining)}' are not present on class '{metadata.name}'."
            )

        return sorted_id

    def find_by(self, search: Optional[Mapping[str, Any]] = None, hydration: Optional[Hydration] = None) -> Optional[T]:
        """The single match of ``search``, or None."""
        return self.filter(search).max_result(1).query().get_one_or_null_result(hydration)

    def count(self, field: str = "id", distinct: bool = True, search: Optional[Mapping[str, Any]] = None) -> int:
        select = list(self._select)
        field = self.get_field_name(field)
        self.filter(search).select(f"COUNT(DISTINCT {field})" if distinct else f"COUNT({field})")

        for select_field in select:
            self.add_select(select_field)

        # GROUP BY would split the count into one row per group
        self.query_builder().reset_part("group_by")

        return int(self.query().get_single_scalar_result())

    def find_or_die(self, id: Any, hydration: Optional[Hydration] = None) -> T:
        model = self.find(id, hydration)

        if model is None:
            raise NoResultError(f"{self.class_metadata.name} {id!r} not found")

        return model

    def find_or_die_as_array(self, id: Any) -> Dict[str, Any]:
        return dict(self.find_or_die(id, Hydration.ARRAY))

    def find_all(self, search: Optional[Mapping[str, Any]] = None, hydration: Optional[Hydration] = None) -> Any:
        return self.filter(search).query().get_result(hydration or Hydration.OBJECT)

    def find_all_as_array(self, search: Optional[Mapping[str, Any]] = None) -> Any:
        return self.find_all(search, Hydration.ARRAY)

    def find_all_detached(
        self, search: Optional[Mapping[str, Any]] = None, hydration: Optional[Hydration] = None
    ) -> "DetachedResultIterator[T]":
        """
        Stream matches page by page, detaching each one once the next is requested.

        Pages hold at most ``min(max_result, DETACHED_PAGE_SIZE)`` rows, so memory
        stays bounded on large result sets. The finder is cleared once the
        iterator is exhausted or closed.
        """
        self.filter(search).query_builder()
        return DetachedResultIterator(self, hydration or Hydration.OBJECT)

    def query(self) -> Query:
        """Compile the accumulated state into a Query and clear the finder."""
        try:
            builder = self.query_builder()
            builder.set_max_results(self._max_result)
            if self._offset_result is not None:
                builder.set_first_result(self._offset_result)

            return builder.get_query()
        finally:
            self.clear()

    def query_builder(self) -> QueryBuilder:
        if self._query_builder is None:
            self._query_builder = QueryBuilder(self.session).from_(self.entity, self.get_alias()).select(self.get_alias())
            self.context_limitation()

        return self._query_builder

    def get_alias(self) -> str:
        return self.alias

    def get_parameter_name(self) -> str:
        name = f"p{self._parameter_index}"
        self._parameter_index += 1
        return name

    def get_field_name(self, field: str) -> str:
        """Qualify a known simple field with the alias; pass anything else through."""
        if "." not in field and self.class_metadata.has_field(field):
            return f"{self.get_alias()}.{self.class_metadata.column_name(field)}"
        return field

    def detach(self, entity: Any) -> None:
        if is_mapped_instance(entity) and entity in self.session:
            self.session.expunge(entity)

    def clear(self) -> None:
        """Drop all state of the current query; the alias is kept."""
        self._query_builder = None
        self._select = []
        self._join_stack = set()
        self._group_by_stack = set()
        self._parameter_index = 0
        self._offset_result = None
        self._max_result = None


ObjectFinder._filters = ObjectFinder._collect_filters()


class DetachedState(str, Enum):
    """States of a DetachedResultIterator."""

    FETCHING = "fetching"
    YIELDING = "yielding"
    EXHAUSTED = "exhausted"


class DetachedResultIterator(Iterator[T]):
    """Pull-based pager behind ObjectFinder.find_all_detached()."""

    def __init__(self, finder: ObjectFinder[T], hydration: Hydration):
        self._finder = finder
        self._hydration = hydration
        # Pages run on a copy, so reusing the finder mid-stream leaves them untouched
        self._owned_builder = finder.query_builder()
        self._builder = copy(self._owned_builder)
        self._limit = finder._max_result
        self._start = finder._offset_result or 0
        self._page_size = DETACHED_PAGE_SIZE if self._limit is None else min(self._limit, DETACHED_PAGE_SIZE)
        self._offset = 0
        self._requested = 0
        self._page: List[Any] = []
        self._position = 0
        self._pending_detach: Optional[Any] = None
        self.state = DetachedState.FETCHING if self._page_size > 0 else DetachedState.EXHAUSTED
        self.page_count = 0

        if self.state is DetachedState.EXHAUSTED:
            self._finish()

    def __iter__(self) -> "DetachedResultIterator[T]":
        return self

    def __next__(self) -> T:
        self._detach_pending()

        while True:
            if self.state is DetachedState.EXHAUSTED:
                raise StopIteration

            if self.state is DetachedState.FETCHING:
                self._fetch()
                continue

            if self._position < len(self._page):
                entity = self._page[self._position]
                self._position += 1
                self._pending_detach = entity
                return entity

            self._offset += self._requested
            if self._limit is not None and self._offset >= self._limit:
                self._finish()
            else:
                self.state = DetachedState.FETCHING

    def __enter__(self) -> "DetachedResultIterator[T]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Stop early: detach the last entity handed out and clear the finder."""
        self._detach_pending()
        if self.state is not DetachedState.EXHAUSTED:
            self._finish()

    def _fetch(self) -> None:
        size = self._page_size
        if self._limit is not None:
            size = min(size, self._limit - self._offset)

        self._requested = size
        self._builder.set_first_result(self._start + self._offset).set_max_results(size)
        result = self._builder.get_query().get_result(self._hydration)
        self._page = list(result.values()) if isinstance(result, dict) else result
        self._position = 0
        self.page_count += 1
        logger.debug("Fetched page %d of %d rows at offset %d", self.page_count, len(self._page), self._start + self._offset)

        if not self._page:
            self._finish()
        else:
            self.state = DetachedState.YIELDING

    def _detach_pending(self) -> None:
        if self._pending_detach is not None:
            self._finder.detach(self._pending_detach)
            self._pending_detach = None

    def _finish(self) -> None:
        self.state = DetachedState.EXHAUSTED
        self._page = []
        # A finder already reused for another query keeps that query
        if self._finder._query_builder is self._owned_builder:
            self._finder.clear()
