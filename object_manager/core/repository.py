# object_manager/core/repository.py
"""Generic repository for common lookups of one mapped class."""

from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, TYPE_CHECKING

if TYPE_CHECKING:
    from object_manager.manager import ObjectManager
    from object_manager.query.finder import ObjectFinder

ModelType = TypeVar("ModelType")


class EntityRepository(Generic[ModelType]):
    """Repository returned by ObjectManager.get_repository(), built on finders."""

    def __init__(self, entity: Type[ModelType], manager: "ObjectManager"):
        self.entity = entity
        self.manager = manager

    def finder(self, alias: Optional[str] = None) -> "ObjectFinder[ModelType]":
        """Get a fresh finder for the repository's class."""
        return self.manager.get_finder(self.entity, alias)

    def find(self, id: Any) -> Optional[ModelType]:
        """Get record by identifier."""
        return self.manager.find(self.entity, id)

    def find_all(self) -> List[ModelType]:
        """Get all records."""
        return self.finder().find_all()

    def find_by(
        self,
        criteria: Dict[str, Any],
        order_by: Optional[Dict[str, str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[ModelType]:
        """Get records matching criteria, ordered as {field: "ASC"|"DESC"}."""
        finder = self.finder().filter(criteria)

        for field, direction in (order_by or {}).items():
            finder.query_builder().add_order_by(finder.get_field_name(field), direction)

        return finder.max_result(limit).offset_result(offset).find_all()

    def find_one_by(self, criteria: Dict[str, Any]) -> Optional[ModelType]:
        """Get single record matching criteria."""
        return self.finder().find_by(criteria)

    def count(self, **criteria: Any) -> int:
        """Count records with optional filtering."""
        identifier = self.manager.get_class_metadata(self.entity).identifier[0]
        return self.finder().count(identifier, True, criteria)

    def exists(self, **criteria: Any) -> bool:
        """Check if record exists with given filters."""
        return self.count(**criteria) > 0
