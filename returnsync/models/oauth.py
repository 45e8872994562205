from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OAuthSession(BaseModel):
    """
    OAuth session for the inbox provider.

    Loaded from the store at process start, rewritten on every successful
    refresh, deleted on logout.
    """

    provider: str = Field(default="gmail", description="OAuth provider")
    provider_email: Optional[str] = Field(
        default=None, description="Mailbox address for this session"
    )

    access_token: str = Field(description="OAuth access token")
    refresh_token: Optional[str] = Field(
        default=None, description="OAuth refresh token"
    )
    expires_at: Optional[datetime] = Field(
        default=None, description="Access token expiration time"
    )

    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Last update time",
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the access token is expired."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "provider": "gmail",
                "provider_email": "user@gmail.com",
                "access_token": "ya29.xxx",
                "refresh_token": "1//xxx",
                "expires_at": "2026-01-26T12:00:00Z",
            }
        }
    )


class TokenResponse(BaseModel):
    """Token endpoint response (authorization-code and refresh-token grants)."""

    access_token: str
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None

    def expires_at(self, now: datetime) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return now + timedelta(seconds=self.expires_in)
