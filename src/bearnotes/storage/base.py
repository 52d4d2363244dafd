"""Base repository interface for bearnotes persistence."""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from bearnotes.exceptions import ErrorCode, StorageError
from bearnotes.models.schema import SortOrder

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A sort specification: (field name, direction), applied in order
SortSpec = Sequence[Tuple[str, SortOrder]]


class Repository(Generic[T], ABC):
    """Storage port the services depend on.

    Implementations provide find-by-id, filtered find with sort/skip/limit,
    insert, update-by-id, delete-by-id and count-by-filter. Criteria are
    passed as keyword arguments; a key that is absent means "no filter".
    """

    @abstractmethod
    def create(self, entity: T) -> T:
        """Insert a new entity."""

    @abstractmethod
    def get(self, id: str) -> Optional[T]:
        """Get an entity by ID, or None."""

    @abstractmethod
    def update(self, entity: T) -> T:
        """Replace the stored entity with the same ID."""

    @abstractmethod
    def delete(self, id: str) -> bool:
        """Delete an entity by ID. Returns False if it did not exist."""

    @abstractmethod
    def find(
        self,
        sort: Optional[SortSpec] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        **criteria: Any,
    ) -> List[T]:
        """Find entities matching criteria."""

    @abstractmethod
    def count(self, **criteria: Any) -> int:
        """Count entities matching criteria."""


@contextmanager
def storage_operation(
    operation: str, code: ErrorCode = ErrorCode.STORAGE_READ_FAILED
) -> Iterator[None]:
    """Translate database driver failures into StorageError.

    Example:
        with storage_operation("update_note", ErrorCode.STORAGE_WRITE_FAILED):
            session.commit()
    """
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Storage operation '{operation}' failed: {e}")
        raise StorageError(
            f"Storage operation '{operation}' failed",
            operation=operation,
            code=code,
            original_error=e,
        ) from e
