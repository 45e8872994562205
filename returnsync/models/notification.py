from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field


class NotificationType(StrEnum):
    """Type discriminator carried in every alert payload"""

    TRACKING_UPDATE = "tracking_update"
    NEW_RETURNS_FOUND = "new_returns_found"
    DEADLINE_WARNING = "deadline_warning"


class Notification(BaseModel):
    """User-facing alert handed to the delivery collaborator"""

    title: str
    body: str
    subtitle: Optional[str] = None
    payload: dict[str, Any] = Field(
        default_factory=dict, description="Must contain a 'type' discriminator"
    )
    identifier: Optional[str] = Field(
        default=None, description="De-duplicating identifier for the delivery side"
    )

    @property
    def type(self) -> Optional[str]:
        return self.payload.get("type")
