"""
Gmail API wire models.

Field names follow the API's camelCase JSON so responses validate directly.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class GmailMessageId(BaseModel):
    """Message reference returned by the search endpoint."""

    id: str
    threadId: str | None = None


class GmailMessageListResponse(BaseModel):
    """Search endpoint response."""

    messages: list[GmailMessageId] | None = None
    nextPageToken: str | None = None
    resultSizeEstimate: int | None = None


class GmailMessageHeader(BaseModel):
    name: str
    value: str


class GmailMessageBody(BaseModel):
    attachmentId: str | None = None
    size: int = 0
    data: str | None = Field(default=None, description="base64url-encoded content")


class GmailMessagePart(BaseModel):
    """Node of a message's MIME tree. The message payload is the root part."""

    partId: str | None = None
    mimeType: str = ""
    filename: str | None = None
    headers: list[GmailMessageHeader] = Field(default_factory=list)
    body: GmailMessageBody = Field(default_factory=GmailMessageBody)
    parts: list[GmailMessagePart] | None = None

    def header(self, name: str) -> str:
        """Return the first header value matching ``name`` (case-insensitive)."""
        name = name.lower()
        for header in self.headers:
            if header.name.lower() == name:
                return header.value
        return ""


class GmailMessage(BaseModel):
    """Full message as returned by ``messages.get?format=full``."""

    id: str
    threadId: str | None = None
    labelIds: list[str] | None = None
    snippet: str = ""
    payload: GmailMessagePart
    sizeEstimate: int | None = None
    historyId: str | None = None
    internalDate: str | None = Field(
        default=None, description="Server receive time, epoch milliseconds"
    )

    @property
    def internal_date(self) -> datetime | None:
        if not self.internalDate:
            return None
        try:
            millis = int(self.internalDate)
        except ValueError:
            return None
        return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
