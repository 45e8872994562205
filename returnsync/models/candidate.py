from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from pydantic import BaseModel, Field


class CandidateReturn(BaseModel):
    """
    A possible return found in the inbox.

    Lives only as long as one scan result. Promotion to a TrackedItem is a
    user action.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    email_id: str = Field(description="Source message id, used as dedup key")
    retailer: str = Field(description="Retailer derived from the sender")
    product_name: str = Field(default="Unknown Product")
    refund_amount: Decimal = Field(default=Decimal("0"))
    email_date: datetime = Field(description="When the message was received")
    email_subject: str = Field(default="")
    email_snippet: str = Field(default="")
