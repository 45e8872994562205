"""
Repository implementations for the returnsync store.

Repositories provide a clean interface for database operations,
encapsulating SQLAlchemy queries and Pydantic model conversions.
"""

from returnsync.db.repositories.item import ItemRepository
from returnsync.db.repositories.oauth_session import OAuthSessionRepository
from returnsync.db.repositories.seen_message import SeenMessageRepository, SeenReason
from returnsync.db.repositories.sent_alert import SentAlertRepository

__all__ = [
    "ItemRepository",
    "OAuthSessionRepository",
    "SeenMessageRepository",
    "SeenReason",
    "SentAlertRepository",
]
