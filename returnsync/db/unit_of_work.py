"""
Unit of Work pattern for transaction coordination.

Provides a clean way to work with multiple repositories within a single transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from returnsync.db.repositories.item import ItemRepository
from returnsync.db.repositories.oauth_session import OAuthSessionRepository
from returnsync.db.repositories.seen_message import SeenMessageRepository
from returnsync.db.repositories.sent_alert import SentAlertRepository

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from returnsync.db.connection import DatabaseConnection


class UnitOfWork:
    """
    Unit of Work for managing database transactions.

    Coordinates multiple repositories within a single transaction,
    ensuring atomic operations with automatic rollback.

    Usage:
        with UnitOfWork(db) as uow:
            items = uow.items.load_all()
            uow.seen_messages.mark(message_id, SeenReason.HIDDEN)
            uow.commit()  # Explicit commit

        # Auto-rollback on exception:
        with UnitOfWork(db) as uow:
            uow.items.save_all(items)
            raise Exception("Something went wrong")
            # Transaction is automatically rolled back
    """

    def __init__(self, connection: DatabaseConnection):
        self._connection = connection
        self._session: Session | None = None
        self._items: ItemRepository | None = None
        self._oauth_sessions: OAuthSessionRepository | None = None
        self._seen_messages: SeenMessageRepository | None = None
        self._sent_alerts: SentAlertRepository | None = None

    def __enter__(self) -> UnitOfWork:
        self._session = self._connection.get_session()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self._close()
        return False  # Don't suppress exceptions

    @property
    def session(self) -> Session:
        """Get current session (raises if not in context)."""
        if self._session is None:
            raise RuntimeError("UnitOfWork must be used within a context manager")
        return self._session

    @property
    def items(self) -> ItemRepository:
        """Tracked item repository for this unit of work."""
        if self._items is None:
            self._items = ItemRepository(self.session)
        return self._items

    @property
    def oauth_sessions(self) -> OAuthSessionRepository:
        """OAuth session repository for this unit of work."""
        if self._oauth_sessions is None:
            self._oauth_sessions = OAuthSessionRepository(self.session)
        return self._oauth_sessions

    @property
    def seen_messages(self) -> SeenMessageRepository:
        """Seen message repository for this unit of work."""
        if self._seen_messages is None:
            self._seen_messages = SeenMessageRepository(self.session)
        return self._seen_messages

    @property
    def sent_alerts(self) -> SentAlertRepository:
        """Sent alert ledger for this unit of work."""
        if self._sent_alerts is None:
            self._sent_alerts = SentAlertRepository(self.session)
        return self._sent_alerts

    def commit(self):
        """Commit the current transaction."""
        self.session.commit()

    def rollback(self):
        """Rollback the current transaction."""
        self.session.rollback()

    def _close(self):
        """Close the session."""
        if self._session is not None:
            self._session.close()
            self._session = None
            self._items = None
            self._oauth_sessions = None
            self._seen_messages = None
            self._sent_alerts = None
