"""
Sent alert repository.

Ledger of one-off alert identifiers, so a warning is delivered only once
across runs.
"""

from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import Table, select

from returnsync.db.repositories.base import BaseRepository
from returnsync.db.tables import sent_alerts


class SentAlertRepository(BaseRepository):
    @property
    def table(self) -> Table:
        return sent_alerts

    def mark_many(self, identifiers: Iterable[str]) -> None:
        now = datetime.now(timezone.utc)
        for identifier in identifiers:
            self._upsert(
                {"identifier": identifier, "sent_at": now},
                index_elements=["identifier"],
            )

    def sent_among(self, identifiers: Iterable[str]) -> set[str]:
        """Which of ``identifiers`` were already sent."""
        wanted = list(identifiers)
        if not wanted:
            return set()
        stmt = select(self.table.c.identifier).where(
            self.table.c.identifier.in_(wanted)
        )
        return set(self.session.execute(stmt).scalars())
