"""
Tracking provider (Shippo) wire models.
"""

from typing import Optional

from pydantic import BaseModel


class ShippoLocation(BaseModel):
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class ShippoTrackingEvent(BaseModel):
    """Current status or one history entry"""

    status: str = "UNKNOWN"
    status_details: Optional[str] = None
    status_date: Optional[str] = None
    location: Optional[ShippoLocation] = None


class ShippoTrackingResponse(BaseModel):
    """GET /tracks/{carrier}/{tracking_number} response"""

    carrier: str
    tracking_number: str
    eta: Optional[str] = None
    tracking_status: Optional[ShippoTrackingEvent] = None
    tracking_history: Optional[list[ShippoTrackingEvent]] = None
