"""
Seen message repository.

Permanent set of inbox message ids that must not be surfaced (or announced)
again.
"""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Iterable

from sqlalchemy import Table, delete, func, select

from returnsync.db.repositories.base import BaseRepository
from returnsync.db.tables import seen_messages


class SeenReason(StrEnum):
    """Why a message id is in the seen-set"""

    HIDDEN = "hidden"  # User dismissed the candidate
    PROMOTED = "promoted"  # User turned it into a tracked item
    NOTIFIED = "notified"  # Already announced in an alert

    @property
    def excludes_candidate(self) -> bool:
        return self in (SeenReason.HIDDEN, SeenReason.PROMOTED)


class SeenMessageRepository(BaseRepository):
    """Repository for the seen-set."""

    @property
    def table(self) -> Table:
        return seen_messages

    def mark(self, message_id: str, reason: SeenReason) -> None:
        """
        Add a message id to the seen-set.

        A stronger reason (hidden/promoted) is never downgraded to notified.
        """
        existing = self.get_reason(message_id)
        if existing is not None and existing.excludes_candidate:
            if not reason.excludes_candidate:
                return

        self._upsert(
            {
                "message_id": message_id,
                "reason": reason.value,
                "seen_at": datetime.now(timezone.utc),
            },
            index_elements=["message_id"],
        )

    def mark_many(self, message_ids: Iterable[str], reason: SeenReason) -> None:
        for message_id in message_ids:
            self.mark(message_id, reason)

    def unmark(self, message_id: str) -> bool:
        stmt = delete(self.table).where(self.table.c.message_id == message_id)
        result = self.session.execute(stmt)
        return result.rowcount > 0

    def get_reason(self, message_id: str) -> SeenReason | None:
        stmt = select(self.table.c.reason).where(
            self.table.c.message_id == message_id
        )
        reason = self.session.execute(stmt).scalar_one_or_none()
        return SeenReason(reason) if reason is not None else None

    def is_excluded(self, message_id: str) -> bool:
        """Whether the message must never come back as a candidate."""
        reason = self.get_reason(message_id)
        return reason is not None and reason.excludes_candidate

    def excluded_ids(self) -> set[str]:
        """Ids that must never come back as candidates."""
        stmt = select(self.table.c.message_id).where(
            self.table.c.reason.in_(
                [SeenReason.HIDDEN.value, SeenReason.PROMOTED.value]
            )
        )
        return set(self.session.execute(stmt).scalars())

    def notified_ids(self) -> set[str]:
        """Ids already announced to the user."""
        stmt = select(self.table.c.message_id).where(
            self.table.c.reason == SeenReason.NOTIFIED.value
        )
        return set(self.session.execute(stmt).scalars())

    def count(self, reason: SeenReason | None = None) -> int:
        stmt = select(func.count()).select_from(self.table)
        if reason is not None:
            stmt = stmt.where(self.table.c.reason == reason.value)
        return self.session.execute(stmt).scalar_one()

    def clear(self) -> int:
        result = self.session.execute(delete(self.table))
        return result.rowcount
