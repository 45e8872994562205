"""
returnsync Database Module.

Provides database connection management and repositories for the local store.
Uses SQLAlchemy Core.
"""

from returnsync.db.connection import DatabaseConnection
from returnsync.db.unit_of_work import UnitOfWork

__all__ = ["DatabaseConnection", "UnitOfWork"]
