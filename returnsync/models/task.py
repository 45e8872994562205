"""
Host task payload models.

These models define the body Cloud Tasks posts to the worker when it grants
an execution window.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class SyncRefreshTask(BaseModel):
    """Execution grant payload"""

    job_id: str = Field(description="Stable recurring job identifier")
    not_before: datetime | None = Field(
        default=None, description="Earliest run time requested when scheduled"
    )
    grant_seconds: int | None = Field(
        default=None, ge=1, description="Override for the execution window length"
    )


class GmailCodeExchangeRequest(BaseModel):
    """Authorization code returned by the consent screen"""

    code: str = Field(description="OAuth authorization code")
