"""
Tracked item repository.

The item list is stored as one JSON document and rewritten as a whole, but
callers only ever change it through keyed per-item updates.
"""

import logging
from datetime import datetime, timezone
from typing import Callable

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import Table, select

from returnsync.db.repositories.base import BaseRepository
from returnsync.db.tables import app_state
from returnsync.models.item import TrackedItem

logger = logging.getLogger(__name__)

ITEMS_KEY = "return_items"

_items_adapter = TypeAdapter(list[TrackedItem])


class ItemRepository(BaseRepository):
    """Repository for the persisted tracked item list."""

    @property
    def table(self) -> Table:
        return app_state

    def load_all(self) -> list[TrackedItem]:
        """
        Load the stored item list.

        An undecodable document is logged and treated as an empty list.
        """
        stmt = select(self.table.c.value).where(self.table.c.key == ITEMS_KEY)
        raw = self.session.execute(stmt).scalar_one_or_none()
        if raw is None:
            return []

        try:
            return _items_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Stored item list could not be decoded, treating as empty",
                extra={"json_fields": {"error_count": e.error_count()}},
            )
            return []

    def save_all(self, items: list[TrackedItem]) -> None:
        """Rewrite the stored item list."""
        self._upsert(
            {
                "key": ITEMS_KEY,
                "value": _items_adapter.dump_json(items).decode("utf-8"),
                "updated_at": datetime.now(timezone.utc),
            },
            index_elements=["key"],
        )

    def get(self, item_id: str) -> TrackedItem | None:
        for item in self.load_all():
            if item.id == item_id:
                return item
        return None

    def add(self, item: TrackedItem) -> TrackedItem:
        """Append a new item. Ids must be unique."""
        items = self.load_all()
        if any(existing.id == item.id for existing in items):
            raise ValueError(f"Item {item.id} already exists")
        items.append(item)
        self.save_all(items)
        return item

    def delete(self, item_id: str) -> bool:
        items = self.load_all()
        remaining = [item for item in items if item.id != item_id]
        if len(remaining) == len(items):
            return False
        self.save_all(remaining)
        return True

    def update(
        self, item_id: str, transform: Callable[[TrackedItem], TrackedItem]
    ) -> tuple[TrackedItem, TrackedItem] | None:
        """
        Apply ``transform`` to one item against a fresh read of the list.

        Args:
            item_id: Item to update
            transform: Receives a copy of the stored item, returns the new one

        Returns:
            (previous, updated) or None if the item no longer exists
        """
        return self.update_many({item_id: transform}).get(item_id)

    def update_many(
        self, transforms: dict[str, Callable[[TrackedItem], TrackedItem]]
    ) -> dict[str, tuple[TrackedItem, TrackedItem]]:
        """
        Apply a batch of keyed updates with one read and one rewrite.

        Ids missing from the stored list are skipped.

        Returns:
            Mapping of item id to (previous, updated) for applied updates
        """
        items = self.load_all()
        applied: dict[str, tuple[TrackedItem, TrackedItem]] = {}

        for index, item in enumerate(items):
            transform = transforms.get(item.id)
            if transform is None:
                continue
            updated = transform(item.model_copy(deep=True))
            # The id is the key and never changes
            updated.id = item.id
            items[index] = updated
            applied[item.id] = (item, updated)

        if applied:
            self.save_all(items)
        return applied

    def update_details(self, item_id: str, **changes) -> TrackedItem | None:
        """
        Update user-owned fields of an item.

        Changing the tracking number drops the stale tracking snapshot.
        """
        def apply(item: TrackedItem) -> TrackedItem:
            tracking_changed = (
                "tracking_number" in changes
                and changes["tracking_number"] != item.tracking_number
            )
            item = item.model_copy(update=changes)
            if tracking_changed:
                item.tracking_info = None
                item.last_synced_at = None
            return item

        result = self.update(item_id, apply)
        if result is None:
            return None
        return result[1]
