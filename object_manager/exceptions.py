"""Exceptions raised by the finder and the object manager."""

from typing import Optional

from sqlalchemy.exc import MultipleResultsFound, NoResultFound


class ObjectManagerError(Exception):
    """Base class for every error raised by this package."""


class HttpStatusError(ObjectManagerError):
    """An error carrying the HTTP status an outer transport should answer with."""

    status_code: int = 500

    def get_status_code(self) -> int:
        return self.status_code


class InvalidArgumentError(ObjectManagerError, ValueError):
    """Invalid input: bad placeholder, missing bind value, scalar composite id."""


class FinderLogicError(ObjectManagerError, RuntimeError):
    """A defect in the calling code, not something to recover from."""


class MappingError(FinderLogicError):
    """Identifier values that do not match the entity mapping."""


class WrongFilterValueError(HttpStatusError):
    """A registered filter rejected the shape of its value."""

    status_code = 422

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"Wrong value of filter parameter `{field}`.")
        self.field = field


class NoResultError(HttpStatusError, NoResultFound):
    """Nothing found where a result was required."""

    status_code = 404

    def __init__(self, message: str = "No result was found for query although at least one row was expected."):
        super().__init__(message)


class NonUniqueResultError(ObjectManagerError, MultipleResultsFound):
    """More than one row matched a single-result query."""

    def __init__(self, message: str = "More than one result was found for query although one row or none was expected."):
        super().__init__(message)
