"""
Base repository class for data access layer.

Repositories never commit: the calling service owns the transaction, so a
rule change and its history entry land together or not at all.

Example:
    class IgnoredGameRepository(BaseRepository[IgnoredScheduleGame]):
        def dates_for(self, team_id: str, module_id: str) -> Set[str]:
            ...
"""
from abc import ABC
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy.orm import Query, Session

T = TypeVar("T")


class BaseRepository(Generic[T], ABC):
    """
    Shared lookups for a single model.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    def query(self) -> Query:
        """Start a query over this repository's model."""
        return self.db.query(self.model_type)

    def find_by_id(self, id: Any) -> Optional[T]:
        return self.db.get(self.model_type, id)

    def where_first(self, *criterion) -> Optional[T]:
        """First record matching the given SQLAlchemy expressions, or None."""
        return self.query().filter(*criterion).first()

    def create(self, **kwargs) -> T:
        """Add a new record to the session (flushed on the next commit)."""
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        return instance
