"""
Shipment tracking client.

Resolves a tracking number to a carrier, fetches tracking from the provider
and caches each result for a fixed time-to-live.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, NamedTuple
from urllib.parse import quote

import requests
from pydantic import ValidationError

from returnsync import config
from returnsync.errors import DecodeError, NetworkError
from returnsync.models.item import TrackingDetail, TrackingInfo, TrackingStatus
from returnsync.models.shippo import (
    ShippoLocation,
    ShippoTrackingEvent,
    ShippoTrackingResponse,
)
from returnsync.utils.carrier import detect_carrier, normalize_tracking_number

logger = logging.getLogger(__name__)

# Provider status vocabulary -> canonical status. Anything else is UNKNOWN.
SHIPPO_STATUS_MAP: dict[str, TrackingStatus] = {
    "PRE_TRANSIT": TrackingStatus.PENDING,
    "TRANSIT": TrackingStatus.IN_TRANSIT,
    "OUT_FOR_DELIVERY": TrackingStatus.OUT_FOR_DELIVERY,
    "DELIVERED": TrackingStatus.DELIVERED,
    "RETURNED": TrackingStatus.EXCEPTION,
    "FAILURE": TrackingStatus.EXCEPTION,
    "UNKNOWN": TrackingStatus.UNKNOWN,
}

# Provider timestamps, with and without fractional seconds
PROVIDER_DATE_FORMATS = ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z")

UNKNOWN_LOCATION = "Unknown Location"
DEFAULT_ACTIVITY = "Status update"


class CacheEntry(NamedTuple):
    info: TrackingInfo
    fetched_at: datetime


def map_provider_status(status: str | None) -> TrackingStatus:
    """Map a provider status string to the canonical status."""
    if not status:
        return TrackingStatus.UNKNOWN
    return SHIPPO_STATUS_MAP.get(status.strip().upper(), TrackingStatus.UNKNOWN)


def parse_provider_date(value: str | None) -> datetime | None:
    if not value:
        return None
    for fmt in PROVIDER_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def format_location(location: ShippoLocation | None) -> str:
    """
    Build "City, ST 12345" from the parts present.

    Falls back to the country, then to "Unknown Location".
    """
    if location is None:
        return UNKNOWN_LOCATION

    text = location.city or ""
    if location.state:
        text = f"{text}, {location.state}" if text else location.state
    if location.zip:
        text = f"{text} {location.zip}" if text else location.zip

    if not text:
        return location.country or UNKNOWN_LOCATION
    return text


class TrackingClient:
    """
    Client for the tracking provider API.

    Results are cached per tracking number; an entry older than the TTL is
    treated as absent. Failures are never cached.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        session: requests.Session | None = None,
        cache_ttl: timedelta | None = None,
        timeout: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.api_key = api_key if api_key is not None else config.SHIPPO_API_KEY
        self.base_url = (base_url or config.TRACKING_API_BASE_URL).rstrip("/")
        self.session = session or requests.Session()
        self.cache_ttl = cache_ttl or timedelta(minutes=config.TRACKING_CACHE_TTL_MINUTES)
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._cache: dict[str, CacheEntry] = {}
        self._cache_lock = threading.Lock()

    def fetch(self, tracking_number: str) -> TrackingInfo:
        """
        Get tracking info for a tracking number.

        Args:
            tracking_number: Carrier tracking number

        Returns:
            TrackingInfo from cache (within TTL) or from the provider

        Raises:
            NetworkError: On transport or HTTP errors
            DecodeError: If the provider response cannot be decoded
        """
        number = normalize_tracking_number(tracking_number)

        cached = self.get_cached(number)
        if cached is not None:
            logger.debug("Tracking cache hit for %s", number)
            return cached

        carrier = detect_carrier(number)
        response = self._request(carrier.value, number)
        now = self._clock()
        info = self._to_tracking_info(response, now)

        with self._cache_lock:
            self._cache[number] = CacheEntry(info=info, fetched_at=now)

        logger.info(
            "Fetched tracking",
            extra={
                "json_fields": {
                    "tracking_number": number,
                    "carrier": carrier.value,
                    "status": info.status.value,
                    "events": len(info.details),
                }
            },
        )
        return info

    def get_cached(self, tracking_number: str) -> TrackingInfo | None:
        """Return the cached info if still within the TTL, dropping it otherwise."""
        number = normalize_tracking_number(tracking_number)
        with self._cache_lock:
            entry = self._cache.get(number)
            if entry is None:
                return None
            if self._clock() - entry.fetched_at < self.cache_ttl:
                return entry.info
            del self._cache[number]
            return None

    def invalidate(self, tracking_number: str) -> None:
        with self._cache_lock:
            self._cache.pop(normalize_tracking_number(tracking_number), None)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def _request(self, carrier: str, tracking_number: str) -> ShippoTrackingResponse:
        url = f"{self.base_url}/tracks/{quote(carrier)}/{quote(tracking_number)}"
        headers = {
            "Authorization": f"{config.TRACKING_AUTH_SCHEME} {self.api_key}",
            "Accept": "application/json",
        }

        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Tracking request failed for {tracking_number}: {e}") from e

        try:
            return ShippoTrackingResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DecodeError(
                f"Invalid tracking response for {tracking_number}: {e}"
            ) from e

    def _to_tracking_info(
        self, response: ShippoTrackingResponse, now: datetime
    ) -> TrackingInfo:
        current: ShippoTrackingEvent | None = response.tracking_status
        details = [
            TrackingDetail(
                date=parse_provider_date(event.status_date) or now,
                location=format_location(event.location),
                activity=event.status_details or DEFAULT_ACTIVITY,
            )
            for event in response.tracking_history or []
        ]

        return TrackingInfo(
            tracking_number=response.tracking_number,
            carrier=response.carrier,
            status=map_provider_status(current.status if current else None),
            estimated_delivery=parse_provider_date(response.eta),
            last_updated=now,
            details=details,
        )
