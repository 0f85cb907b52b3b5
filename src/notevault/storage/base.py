"""Common base for the SQLAlchemy-backed repositories."""
import datetime
from abc import ABC, abstractmethod
from datetime import timezone
from typing import Generic, List, Optional, TypeVar

from sqlalchemy.orm import sessionmaker

T = TypeVar("T")


def to_db_datetime(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Normalise a datetime for storage: UTC, naive (SQLite keeps no offset)."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Repository(ABC, Generic[T]):
    """Base class for repositories.

    Each public method opens its own session from ``session_factory`` and
    commits before returning, so callers never hold a transaction open.
    """

    def __init__(self, session_factory: sessionmaker):
        """Initialize the repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    @abstractmethod
    def get_all(self) -> List[T]:
        """Return every stored record."""
