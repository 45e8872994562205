import math
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

SECONDS_PER_DAY = 24 * 60 * 60


class RefundStatus(StrEnum):
    """Refund lifecycle of a tracked return"""

    PENDING = "pending"  # Return not yet sent
    SHIPPED = "shipped"  # Return shipped back to retailer
    RECEIVED = "received"  # Retailer received the return
    PROCESSED = "processed"  # Refund processed
    COMPLETED = "completed"  # Refund landed, nothing left to do


class TrackingStatus(StrEnum):
    """Canonical shipment status all provider vocabularies map into"""

    UNKNOWN = "unknown"
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    EXCEPTION = "exception"


class Carrier(StrEnum):
    """Carrier tokens understood by the tracking provider"""

    UPS = "ups"
    USPS = "usps"
    FEDEX = "fedex"
    DHL = "dhl"
    AUTO_DETECT = "shippo"  # Let the provider figure it out


class TrackingDetail(BaseModel):
    """Single event in a shipment's history"""

    id: str = Field(default_factory=lambda: str(uuid4()))
    date: datetime = Field(description="Event timestamp")
    location: str = Field(description="Human readable event location")
    activity: str = Field(description="Provider's free-text description")


class TrackingInfo(BaseModel):
    """Tracking snapshot for one tracking number"""

    tracking_number: str = Field(description="Carrier tracking number")
    carrier: str = Field(description="Carrier as reported by the provider")
    status: TrackingStatus = Field(
        default=TrackingStatus.UNKNOWN, description="Canonical status"
    )
    estimated_delivery: Optional[datetime] = Field(
        default=None, description="Provider ETA"
    )
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When this snapshot was fetched",
    )
    details: list[TrackingDetail] = Field(
        default_factory=list, description="Event history, provider order"
    )


class TrackedItem(BaseModel):
    """
    A return the user is tracking.

    Sync only ever writes ``tracking_info``, ``last_synced_at`` and, on
    delivery, advances ``refund_status``. Everything else belongs to the user.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    product_name: str = Field(description="Product being returned")
    retailer: str = Field(description="Retailer the return goes back to")
    refund_amount: Decimal = Field(default=Decimal("0"), description="Expected refund")
    refund_status: RefundStatus = Field(
        default=RefundStatus.PENDING, description="Refund lifecycle status"
    )
    tracking_number: Optional[str] = Field(
        default=None, description="Return shipment tracking number"
    )
    notes: Optional[str] = Field(default=None, description="User notes")

    # Local image attachments (file ids, stored elsewhere)
    product_image_id: Optional[str] = None
    return_label_image_id: Optional[str] = None
    packaging_image_id: Optional[str] = None

    tracking_info: Optional[TrackingInfo] = Field(
        default=None, description="Latest tracking snapshot"
    )
    last_synced_at: Optional[datetime] = Field(
        default=None, description="Last successful tracking refresh"
    )
    return_deadline: Optional[datetime] = Field(
        default=None, description="Last day the retailer accepts the return"
    )

    @property
    def tracking_status(self) -> Optional[TrackingStatus]:
        if self.tracking_info is None:
            return None
        return self.tracking_info.status

    @property
    def needs_tracking_refresh(self) -> bool:
        """Whether background sync should fetch tracking for this item."""
        if not self.tracking_number or not self.tracking_number.strip():
            return False
        return self.refund_status not in (
            RefundStatus.PROCESSED,
            RefundStatus.COMPLETED,
        )

    def days_until_deadline(self, now: datetime) -> Optional[int]:
        """
        Whole days left to send the return, counting a partial day as one.

        None unless the return is still pending with a deadline ahead.
        """
        if self.return_deadline is None or self.refund_status != RefundStatus.PENDING:
            return None
        deadline = self.return_deadline
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        remaining = (deadline - now).total_seconds()
        if remaining <= 0:
            return None
        return math.ceil(remaining / SECONDS_PER_DAY)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "0b6f3c1e-2d1a-4b8e-9b7a-3f1d2c4e5a6b",
                "product_name": "Air Max 90",
                "retailer": "Nike",
                "refund_amount": "120.00",
                "refund_status": "shipped",
                "tracking_number": "1Z999AA10123456784",
                "last_synced_at": "2026-01-26T10:00:00Z",
            }
        }
    )
