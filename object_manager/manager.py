"""Object manager: a session facade adding finders and batch persistence."""

from typing import Any, Optional, Type, TypeVar

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from object_manager.core.repository import EntityRepository
from object_manager.exceptions import NoResultError
from object_manager.query.builder import QueryBuilder
from object_manager.query.finder import ObjectFinder
from object_manager.query.metadata import EntityDescriptor, get_entity_descriptor

T = TypeVar("T")


class ObjectManager:
    """Management of entity objects over a SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    def get_finder(self, entity: Type[T], alias: Optional[str] = None) -> ObjectFinder[T]:
        """
        Get a finder bound to ``entity``.

        An entity may name its own finder class with a ``__finder__`` attribute
        (an ObjectFinder subclass carrying its filter methods).
        """
        finder_class = getattr(entity, "__finder__", None) or ObjectFinder
        return finder_class(self.session, entity, alias)

    def find(self, entity: Type[T], id: Any) -> Optional[T]:
        return self.session.get(entity, id)

    def find_or_die(self, entity: Type[T], id: Any) -> T:
        model = self.find(entity, id)
        if model is None:
            raise NoResultError(f"{entity.__name__} {id!r} not found")
        return model

    def persist(self, obj: Any) -> None:
        self.session.add(obj)

    def persist_all(self, *objects: Any) -> None:
        for obj in objects:
            self.persist(obj)

    def remove(self, obj: Any) -> None:
        self.session.delete(obj)

    def remove_all(self, *objects: Any) -> None:
        for obj in objects:
            self.remove(obj)

    def clear(self) -> None:
        self.session.expunge_all()

    def detach(self, obj: Any) -> None:
        self.session.expunge(obj)

    def refresh(self, obj: Any) -> None:
        self.session.refresh(obj)

    def flush(self) -> None:
        self.session.flush()

    def get_repository(self, entity: Type[T]) -> EntityRepository[T]:
        return EntityRepository(entity, self)

    def get_class_metadata(self, entity: Type[Any]) -> EntityDescriptor:
        return get_entity_descriptor(entity)

    def contains(self, obj: Any) -> bool:
        return obj in self.session

    def initialize_object(self, obj: Any) -> None:
        """Load the attributes of a persistent object that are not loaded yet."""
        state = inspect(obj)
        unloaded = [key for key in state.unloaded if key in state.mapper.column_attrs]
        if state.persistent and unloaded:
            self.session.refresh(obj, attribute_names=unloaded)

    def create_query_builder(self, entity: Type[Any], alias: str, index_by: Optional[str] = None) -> QueryBuilder:
        metadata = self.get_class_metadata(entity)
        return QueryBuilder(self.session).select(alias).from_(metadata.entity, alias, index_by)
