"""
Mutable query builder compiled into SQLAlchemy statements.

The builder accumulates textual SELECT, JOIN, WHERE, GROUP BY and ORDER BY
parts referring to entity aliases (``u.email = :p0``), plus bound parameters
and pagination. ``get_query()`` compiles everything into a SQLAlchemy
``Select`` against ``aliased()`` entities, so the textual parts are plain SQL
over the aliased tables and column names.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

from sqlalchemy import bindparam, inspect, literal_column, select, text
from sqlalchemy.engine import Result, Row
from sqlalchemy.orm import Session, aliased
from sqlalchemy.orm.state import InstanceState
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import TextClause

from object_manager.exceptions import FinderLogicError, NoResultError, NonUniqueResultError
from object_manager.query.metadata import get_entity_descriptor, resolve_entity
from object_manager.query.schemas import Hydration, JoinDefinition, JoinKind, JoinType, Parameter

logger = logging.getLogger(__name__)

# Same placeholder syntax SQLAlchemy's text() recognises.
_BIND_PARAM = re.compile(r"(?<![:\w\x5c]):(\w+)(?!:)", re.UNICODE)

_PARTS = {
    "select": "_select",
    "join": "_joins",
    "where": "_where",
    "group_by": "_group_by",
    "order_by": "_order_by",
}


def _flatten(fields: Iterable[Union[str, Sequence[str]]]) -> List[str]:
    flat: List[str] = []
    for field in fields:
        if isinstance(field, str):
            flat.append(field)
        else:
            flat.extend(field)
    return flat


def _join_type(condition_type: Union[JoinType, str]) -> JoinType:
    if isinstance(condition_type, JoinType):
        return condition_type
    try:
        return JoinType(condition_type.upper())
    except (AttributeError, ValueError) as exc:
        raise FinderLogicError(f"Wrong join condition type '{condition_type}'") from exc


def is_mapped_instance(value: Any) -> bool:
    return isinstance(inspect(value, raiseerr=False), InstanceState)


def entity_to_dict(entity: Any) -> Dict[str, Any]:
    """Column attributes of a mapped instance as a plain dict."""
    mapper = inspect(entity).mapper
    return {attr.key: getattr(entity, attr.key) for attr in mapper.column_attrs}


class Query:
    """A compiled statement ready to execute against a session."""

    def __init__(
        self,
        session: Session,
        statement: Select,
        entity_columns: Tuple[bool, ...],
        parameters: Dict[str, Any],
        max_results: Optional[int] = None,
        index_by: Optional[str] = None,
    ):
        self.session = session
        self.statement = statement
        self.entity_columns = entity_columns
        self.parameters = parameters
        self.max_results = max_results
        self.index_by = index_by

    def get_sql(self, literal_binds: bool = False) -> str:
        """Compile the statement to SQL for the session's dialect."""
        compile_kwargs = {"literal_binds": True} if literal_binds else {}
        return str(self.statement.compile(dialect=self.session.get_bind().dialect, compile_kwargs=compile_kwargs))

    def get_parameters(self) -> Dict[str, Any]:
        return dict(self.parameters)

    def execute(self, statement: Optional[Select] = None) -> Result:
        statement = self.statement if statement is None else statement
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Executing query: %s with %s", self.get_sql(), self.parameters)
        return self.session.execute(statement)

    def get_result(self, hydration: Optional[Hydration] = None) -> Union[List[Any], Dict[Any, Any]]:
        """All rows, keyed by the root index_by attribute when one was given."""
        hydration = Hydration(hydration or Hydration.OBJECT)
        rows = self._hydrate(self.execute(), hydration)

        if self.index_by is None or self.entity_columns != (True,):
            return rows

        if hydration is Hydration.ARRAY:
            return {row[self.index_by]: row for row in rows}
        return {getattr(row, self.index_by): row for row in rows}

    def get_one_or_null_result(self, hydration: Optional[Hydration] = None) -> Any:
        """The single row, or None; more than one row raises NonUniqueResultError."""
        statement = self.statement
        # A limit of one would hide a second match
        if self.max_results is not None and self.max_results < 2:
            statement = statement.limit(2)

        rows = self._hydrate(self.execute(statement), Hydration(hydration or Hydration.OBJECT))
        if len(rows) > 1:
            raise NonUniqueResultError()
        return rows[0] if rows else None

    def get_single_result(self, hydration: Optional[Hydration] = None) -> Any:
        result = self.get_one_or_null_result(hydration)
        if result is None:
            raise NoResultError()
        return result

    def get_single_scalar_result(self) -> Any:
        """First column of the single row."""
        result = self.get_single_result()
        return result[0] if isinstance(result, Row) else result

    def _hydrate(self, result: Result, hydration: Hydration) -> List[Any]:
        if len(self.entity_columns) == 1:
            values = result.scalars()
            if self.entity_columns[0]:
                values = values.unique()
            if hydration is Hydration.ARRAY and self.entity_columns[0]:
                return [entity_to_dict(entity) for entity in values]
            return list(values.all())

        if hydration is Hydration.ARRAY:
            return [
                {key: entity_to_dict(value) if is_mapped_instance(value) else value for key, value in row._mapping.items()}
                for row in result
            ]
        return list(result.all())


class QueryBuilder:
    """Accumulates query parts and compiles them into a Query."""

    def __init__(self, session: Session):
        self.session = session
        self._select: List[str] = []
        self._from: Optional[Tuple[Type[Any], str, Optional[str]]] = None
        self._joins: List[JoinDefinition] = []
        self._where: List[str] = []
        self._group_by: List[str] = []
        self._order_by: List[Tuple[str, Optional[str]]] = []
        self._parameters: Dict[str, Parameter] = {}
        self._first_result: Optional[int] = None
        self._max_results: Optional[int] = None

    def __copy__(self) -> "QueryBuilder":
        clone = QueryBuilder(self.session)
        clone._select = list(self._select)
        clone._from = self._from
        clone._joins = list(self._joins)
        clone._where = list(self._where)
        clone._group_by = list(self._group_by)
        clone._order_by = list(self._order_by)
        clone._parameters = dict(self._parameters)
        clone._first_result = self._first_result
        clone._max_results = self._max_results
        return clone

    # ===== SELECT / FROM =====

    def select(self, *fields: Union[str, Sequence[str]]) -> "QueryBuilder":
        self._select = _flatten(fields)
        return self

    def add_select(self, *fields: Union[str, Sequence[str]]) -> "QueryBuilder":
        self._select.extend(_flatten(fields))
        return self

    def from_(self, entity: Type[Any], alias: str, index_by: Optional[str] = None) -> "QueryBuilder":
        self._from = (entity, alias, index_by)
        return self

    def get_root_entity(self) -> Type[Any]:
        if self._from is None:
            raise FinderLogicError("Query builder has no FROM part")
        return self._from[0]

    def get_root_alias(self) -> str:
        if self._from is None:
            raise FinderLogicError("Query builder has no FROM part")
        return self._from[1]

    # ===== JOINS =====

    def join(
        self,
        join: str,
        alias: str,
        condition_type: Optional[Union[JoinType, str]] = None,
        condition: Optional[str] = None,
        index_by: Optional[str] = None,
    ) -> "QueryBuilder":
        return self._add_join(JoinKind.INNER, join, alias, condition_type, condition, index_by)

    inner_join = join

    def left_join(
        self,
        join: str,
        alias: str,
        condition_type: Optional[Union[JoinType, str]] = None,
        condition: Optional[str] = None,
        index_by: Optional[str] = None,
    ) -> "QueryBuilder":
        return self._add_join(JoinKind.LEFT, join, alias, condition_type, condition, index_by)

    def _add_join(
        self,
        kind: JoinKind,
        join: str,
        alias: str,
        condition_type: Optional[Union[JoinType, str]],
        condition: Optional[str],
        index_by: Optional[str],
    ) -> "QueryBuilder":
        if condition is not None and condition_type is None:
            condition_type = JoinType.WITH
        self._joins.append(
            JoinDefinition(
                kind=kind,
                join=join,
                alias=alias,
                condition_type=_join_type(condition_type) if condition_type is not None else None,
                condition=condition,
                index_by=index_by,
            )
        )
        return self

    # ===== WHERE / GROUP BY / ORDER BY =====

    def where(self, condition: str) -> "QueryBuilder":
        self._where = [condition]
        return self

    def and_where(self, condition: str) -> "QueryBuilder":
        self._where.append(condition)
        return self

    def group_by(self, field: str) -> "QueryBuilder":
        self._group_by = [field]
        return self

    def add_group_by(self, field: str) -> "QueryBuilder":
        self._group_by.append(field)
        return self

    def order_by(self, sort: str, order: Optional[str] = None) -> "QueryBuilder":
        self._order_by = [(sort, order)]
        return self

    def add_order_by(self, sort: str, order: Optional[str] = None) -> "QueryBuilder":
        self._order_by.append((sort, order))
        return self

    def get_part(self, name: str) -> List[Any]:
        if name not in _PARTS:
            raise FinderLogicError(f"Unknown query part '{name}'")
        return list(getattr(self, _PARTS[name]))

    def reset_part(self, name: str) -> "QueryBuilder":
        if name not in _PARTS:
            raise FinderLogicError(f"Unknown query part '{name}'")
        setattr(self, _PARTS[name], [])
        return self

    # ===== PARAMETERS / PAGINATION =====

    def set_parameter(self, name: str, value: Any) -> "QueryBuilder":
        name = name.lstrip(":")
        self._parameters[name] = Parameter(name, value)
        return self

    def get_parameter(self, name: str) -> Optional[Parameter]:
        return self._parameters.get(name.lstrip(":"))

    def get_parameters(self) -> Dict[str, Any]:
        return {name: parameter.value for name, parameter in self._parameters.items()}

    def set_first_result(self, first_result: Optional[int]) -> "QueryBuilder":
        self._first_result = first_result
        return self

    def get_first_result(self) -> Optional[int]:
        return self._first_result

    def set_max_results(self, max_results: Optional[int]) -> "QueryBuilder":
        self._max_results = max_results
        return self

    def get_max_results(self) -> Optional[int]:
        return self._max_results

    # ===== COMPILATION =====

    def get_query(self) -> Query:
        statement, entity_columns = self._build_statement()
        index_by = self._from[2] if self._from else None
        return Query(
            session=self.session,
            statement=statement,
            entity_columns=entity_columns,
            parameters=self.get_parameters(),
            max_results=self._max_results,
            index_by=index_by,
        )

    def _build_statement(self) -> Tuple[Select, Tuple[bool, ...]]:
        entity, root_alias, _ = self._from if self._from else (None, None, None)
        if entity is None:
            raise FinderLogicError("Query builder has no FROM part")

        aliases: Dict[str, Any] = {root_alias: aliased(entity, name=root_alias)}
        joins = []
        for join in self._joins:
            target, onclause = self._resolve_join(join, aliases)
            aliases[join.alias] = target
            joins.append((join, target, onclause))

        fields = self._select or [root_alias]
        columns = [aliases[field] if field in aliases else literal_column(field) for field in fields]
        entity_columns = tuple(field in aliases for field in fields)

        statement = select(*columns).select_from(aliases[root_alias])
        for join, target, onclause in joins:
            statement = statement.join(target, onclause, isouter=join.kind is JoinKind.LEFT)

        if self._where:
            statement = statement.where(*[self._text(condition) for condition in self._where])
        if self._group_by:
            statement = statement.group_by(*[literal_column(field) for field in self._group_by])
        for sort, order in self._order_by:
            column = literal_column(sort)
            if order is None:
                statement = statement.order_by(column)
            elif order.upper() == "DESC":
                statement = statement.order_by(column.desc())
            elif order.upper() == "ASC":
                statement = statement.order_by(column.asc())
            else:
                raise FinderLogicError(f"Wrong order direction '{order}'")

        if self._first_result is not None:
            statement = statement.offset(self._first_result)
        if self._max_results is not None:
            statement = statement.limit(self._max_results)

        return statement, entity_columns

    def _resolve_join(self, join: JoinDefinition, aliases: Dict[str, Any]) -> Tuple[Any, Any]:
        if "." in join.join:
            owner_alias, relation = join.join.split(".", 1)
            if owner_alias not in aliases:
                raise FinderLogicError(f"Unknown alias '{owner_alias}' in join '{join.join}'")
            owner = aliases[owner_alias]
            association = get_entity_descriptor(inspect(owner).mapper.class_).association_mappings.get(relation)
            if association is None:
                raise FinderLogicError(f"'{relation}' is not an association of alias '{owner_alias}'")

            target = aliased(association.target, name=join.alias)
            if join.condition_type is JoinType.ON:
                return target, self._text(join.condition or "")
            onclause = getattr(owner, relation).of_type(target)
            if join.condition:
                onclause = onclause.and_(self._text(join.condition))
            return target, onclause

        # Arbitrary entity join, the condition is the whole ON clause
        if not join.condition:
            raise FinderLogicError(f"Join of entity '{join.join}' requires a condition")
        target = aliased(resolve_entity(self.get_root_entity(), join.join), name=join.alias)
        return target, self._text(join.condition)

    def _text(self, condition: str) -> TextClause:
        clause = text(condition)
        binds = []
        for name in dict.fromkeys(_BIND_PARAM.findall(condition)):
            parameter = self._parameters.get(name)
            if parameter is not None:
                binds.append(bindparam(name, value=parameter.value, expanding=parameter.is_list()))
        return clause.bindparams(*binds) if binds else clause
