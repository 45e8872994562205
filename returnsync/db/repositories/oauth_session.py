"""
OAuth session repository.

Secure storage for the inbox provider's tokens.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Table, delete, select

from returnsync.db.repositories.base import BaseRepository, as_utc
from returnsync.db.tables import oauth_sessions
from returnsync.models.oauth import OAuthSession


class OAuthSessionRepository(BaseRepository):
    """Repository for OAuth session operations."""

    @property
    def table(self) -> Table:
        return oauth_sessions

    def _row_to_model(self, row: Any) -> OAuthSession:
        """Convert database row to OAuthSession model."""
        return OAuthSession(
            provider=row.provider,
            provider_email=row.provider_email,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            expires_at=as_utc(row.expires_at),
            updated_at=as_utc(row.updated_at),
        )

    def _model_to_dict(self, model: OAuthSession) -> dict:
        """Convert OAuthSession model to database dict."""
        return {
            "provider": model.provider,
            "provider_email": model.provider_email,
            "access_token": model.access_token,
            "refresh_token": model.refresh_token,
            "expires_at": model.expires_at,
            "updated_at": datetime.now(timezone.utc),
        }

    def get(self, provider: str = "gmail") -> OAuthSession | None:
        """
        Get the stored session for a provider.

        Args:
            provider: OAuth provider (e.g., 'gmail')

        Returns:
            OAuthSession or None if not found
        """
        stmt = select(self.table).where(self.table.c.provider == provider)
        row = self.session.execute(stmt).fetchone()

        if row is None:
            return None

        return self._row_to_model(row)

    def upsert(self, oauth_session: OAuthSession) -> None:
        """Insert or replace the session, keyed by provider."""
        self._upsert(self._model_to_dict(oauth_session), index_elements=["provider"])

    def delete(self, provider: str = "gmail") -> bool:
        """
        Delete the stored session for a provider.

        Returns:
            True if a session was deleted
        """
        stmt = delete(self.table).where(self.table.c.provider == provider)
        result = self.session.execute(stmt)
        return result.rowcount > 0
