"""Read-only entity metadata derived from SQLAlchemy mappers."""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple, Type

from sqlalchemy import inspect
from sqlalchemy.orm import Mapper, RelationshipDirection, configure_mappers

from object_manager.exceptions import FinderLogicError


@dataclass(frozen=True)
class AssociationMapping:
    """A relationship of a mapped class."""

    name: str
    target: Type[Any]
    is_single_valued: bool
    local_column: Optional[str] = None  # Only set for single-column many-to-one
    remote_attribute: Optional[str] = None  # Target attribute the local column references


@dataclass(frozen=True)
class EntityDescriptor:
    """Identifier, fields and associations of one mapped class."""

    entity: Type[Any]
    name: str
    table_name: str
    identifier: Tuple[str, ...]
    field_mappings: Dict[str, str] = field(default_factory=dict)  # attribute key -> column name
    association_mappings: Dict[str, AssociationMapping] = field(default_factory=dict)

    @property
    def is_identifier_composite(self) -> bool:
        return len(self.identifier) > 1

    def has_field(self, name: str) -> bool:
        return name in self.field_mappings

    def has_association(self, name: str) -> bool:
        return name in self.association_mappings

    def column_name(self, name: str) -> str:
        """Column name backing a simple field or a single-valued association."""
        if name in self.field_mappings:
            return self.field_mappings[name]
        association = self.association_mappings.get(name)
        if association is None or association.local_column is None:
            raise FinderLogicError(f"{self.name} has no column for field '{name}'")
        return association.local_column

    def identifier_values(self, entity: Any) -> Tuple[Any, ...]:
        """Identifier values of an instance, in identifier order."""
        return tuple(getattr(entity, key) for key in self.identifier)


def _build_descriptor(mapper: Mapper) -> EntityDescriptor:
    configure_mappers()

    field_mappings: Dict[str, str] = {}
    for attr in mapper.column_attrs:
        # Skip column_property() expressions with no table column behind them
        column = attr.columns[0]
        if getattr(column, "table", None) is None:
            continue
        field_mappings[attr.key] = column.name

    association_mappings: Dict[str, AssociationMapping] = {}
    for rel in mapper.relationships:
        local_column = remote_attribute = None
        if rel.direction is RelationshipDirection.MANYTOONE and len(rel.local_remote_pairs) == 1:
            local, remote = rel.local_remote_pairs[0]
            local_column = local.name
            remote_attribute = rel.mapper.get_property_by_column(remote).key
        association_mappings[rel.key] = AssociationMapping(
            name=rel.key,
            target=rel.mapper.class_,
            is_single_valued=not rel.uselist,
            local_column=local_column,
            remote_attribute=remote_attribute,
        )

    identifier = tuple(mapper.get_property_by_column(column).key for column in mapper.primary_key)

    return EntityDescriptor(
        entity=mapper.class_,
        name=mapper.class_.__name__,
        table_name=mapper.local_table.name,
        identifier=identifier,
        field_mappings=field_mappings,
        association_mappings=association_mappings,
    )


@lru_cache(maxsize=None)
def get_entity_descriptor(entity: Type[Any]) -> EntityDescriptor:
    """Get the (cached) descriptor of a mapped class."""
    mapper = inspect(entity, raiseerr=False)
    if not isinstance(mapper, Mapper):
        raise FinderLogicError(f"{entity!r} is not a mapped class")
    return _build_descriptor(mapper)


def resolve_entity(anchor: Type[Any], name: str) -> Type[Any]:
    """Find a mapped class by name in the registry of ``anchor``."""
    mapper = inspect(anchor)
    for candidate in mapper.registry.mappers:
        if candidate.class_.__name__ == name:
            return candidate.class_
    raise FinderLogicError(f"Unknown entity '{name}'")
