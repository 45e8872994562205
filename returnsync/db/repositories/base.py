"""
Base repository with common operations.

Provides generic database operations that can be inherited by specific repositories.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class BaseRepository(ABC):
    """
    Base repository bound to one session and one table.

    Subclasses must implement the table property.
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    @abstractmethod
    def table(self) -> Table:
        """SQLAlchemy table for this repository."""
        pass

    def _upsert(self, data: dict, index_elements: list[str]) -> None:
        """
        Insert a row or update it in place on key conflict.

        Args:
            data: Column values
            index_elements: Conflict target columns
        """
        dialect = self.session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

        stmt = insert(self.table).values(**data)
        update_data = {k: v for k, v in data.items() if k not in index_elements}
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_=update_data,
        )
        self.session.execute(stmt)
