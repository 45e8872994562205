"""
Notification trigger and delivery collaborators.

The trigger decides whether an alert is due and builds it. Delivery is
fire-and-forget: errors are logged and never reach the sync run.
"""

import logging
from datetime import datetime
from enum import StrEnum
from typing import Iterable, NamedTuple

import requests

from returnsync import config
from returnsync.models.item import TrackedItem, TrackingStatus
from returnsync.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)

TRACKING_UPDATE_TITLE = "Return Status Update"
NEW_RETURNS_TITLE = "New Returns Found"


class StatusTemplate(NamedTuple):
    body: str
    subtitle_suffix: str | None = None


# One template per canonical status. UNKNOWN has none and never alerts.
STATUS_TEMPLATES: dict[TrackingStatus, StatusTemplate] = {
    TrackingStatus.PENDING: StatusTemplate("⏳ Your return to {retailer} is being processed"),
    TrackingStatus.IN_TRANSIT: StatusTemplate("📦 Your return to {retailer} is now in transit"),
    TrackingStatus.OUT_FOR_DELIVERY: StatusTemplate(
        "🚚 Your return to {retailer} is out for delivery"
    ),
    TrackingStatus.DELIVERED: StatusTemplate(
        "✅ Your return to {retailer} has been delivered!",
        "Check for refund processing",
    ),
    TrackingStatus.EXCEPTION: StatusTemplate(
        "⚠️ Issue with your return to {retailer}",
        "Check tracking details",
    ),
}


class DeadlineUrgency(StrEnum):
    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"

    @classmethod
    def for_days_left(cls, days_left: int) -> "DeadlineUrgency":
        if days_left <= 1:
            return cls.CRITICAL
        if days_left <= 3:
            return cls.URGENT
        return cls.NORMAL


class DeadlineWarning(NamedTuple):
    threshold: int  # Warning mark reached, part of the identifier
    days_left: int


class NotificationDelivery:
    """Delivery collaborator interface."""

    def deliver(self, notification: Notification) -> None:
        raise NotImplementedError


class LoggingNotificationDelivery(NotificationDelivery):
    """Writes alerts to the log. Default when no webhook is configured."""

    def deliver(self, notification: Notification) -> None:
        logger.info(
            "Notification: %s",
            notification.title,
            extra={"json_fields": notification.model_dump()},
        )


class WebhookNotificationDelivery(NotificationDelivery):
    """POSTs alerts as JSON to a push endpoint."""

    def __init__(
        self,
        url: str | None = None,
        session: requests.Session | None = None,
        timeout: int | None = None,
    ):
        self.url = url or config.NOTIFICATION_WEBHOOK_URL
        self.http = session or requests.Session()
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS

    def deliver(self, notification: Notification) -> None:
        response = self.http.post(
            self.url,
            json=notification.model_dump(mode="json"),
            timeout=self.timeout,
        )
        response.raise_for_status()


def build_tracking_notification(
    item: TrackedItem, new_status: TrackingStatus
) -> Notification | None:
    """Build the status-change alert for an item, or None for statuses with no template."""
    template = STATUS_TEMPLATES.get(new_status)
    if template is None:
        return None

    subtitle = item.product_name
    if template.subtitle_suffix:
        subtitle = f"{item.product_name} - {template.subtitle_suffix}"

    return Notification(
        title=TRACKING_UPDATE_TITLE,
        body=template.body.format(retailer=item.retailer),
        subtitle=subtitle,
        payload={
            "type": NotificationType.TRACKING_UPDATE.value,
            "item_id": item.id,
            "new_status": new_status.value,
            "retailer": item.retailer,
        },
        identifier=f"tracking_{item.id}_{new_status.value}",
    )


def build_candidates_notification(count: int) -> Notification:
    noun = "return" if count == 1 else "returns"
    return Notification(
        title=NEW_RETURNS_TITLE,
        body=f"Found {count} new potential {noun} in your email",
        payload={"type": NotificationType.NEW_RETURNS_FOUND.value, "count": count},
        identifier="new_returns_found",
    )


def deadline_identifier(item_id: str, threshold: int) -> str:
    return f"deadline_{item_id}_{threshold}days"


def due_deadline_warning(
    item: TrackedItem, now: datetime, thresholds: Iterable[int]
) -> DeadlineWarning | None:
    """
    The most urgent warning mark an item has reached, if any.

    Only the smallest mark at or above the days left is due, so a run that
    first sees an item late skips the milder warnings it missed.
    """
    days_left = item.days_until_deadline(now)
    if days_left is None:
        return None
    reached = [threshold for threshold in thresholds if days_left <= threshold]
    if not reached:
        return None
    return DeadlineWarning(threshold=min(reached), days_left=days_left)


def build_deadline_notification(item: TrackedItem, warning: DeadlineWarning) -> Notification:
    urgency = DeadlineUrgency.for_days_left(warning.days_left)
    if urgency == DeadlineUrgency.CRITICAL:
        title = "Final Return Warning!"
        body = f"🚨 Last day to return {item.product_name} to {item.retailer}!"
    elif urgency == DeadlineUrgency.URGENT:
        title = "Return Deadline Soon!"
        body = (
            f"⚠️ Only {warning.days_left} days left to return "
            f"{item.product_name} to {item.retailer}"
        )
    else:
        title = "Return Deadline Reminder"
        body = (
            f"⏰ {warning.days_left} days left to return "
            f"{item.product_name} to {item.retailer}"
        )

    return Notification(
        title=title,
        body=body,
        payload={
            "type": NotificationType.DEADLINE_WARNING.value,
            "item_id": item.id,
            "days_left": warning.days_left,
            "urgency": urgency.value,
        },
        identifier=deadline_identifier(item.id, warning.threshold),
    )


class NotificationTrigger:
    """
    Detects alert-worthy changes and hands alerts to a delivery collaborator.

    Every hook returns the notification it sent, or None when nothing was due.
    """

    def __init__(self, delivery: NotificationDelivery | None = None):
        self.delivery = delivery or LoggingNotificationDelivery()

    def on_tracking_transition(
        self,
        item: TrackedItem,
        old_status: TrackingStatus | None,
        new_status: TrackingStatus,
    ) -> Notification | None:
        # No alert when leaving an empty or unknown status
        if old_status is None or old_status == TrackingStatus.UNKNOWN:
            return None
        if old_status == new_status or new_status == TrackingStatus.UNKNOWN:
            return None

        notification = build_tracking_notification(item, new_status)
        if notification is None:
            return None

        self._send(notification)
        return notification

    def on_candidates_found(self, count: int) -> Notification | None:
        if count <= 0:
            return None
        notification = build_candidates_notification(count)
        self._send(notification)
        return notification

    def on_deadline_approaching(
        self, item: TrackedItem, warning: DeadlineWarning
    ) -> Notification:
        notification = build_deadline_notification(item, warning)
        self._send(notification)
        return notification

    def _send(self, notification: Notification) -> None:
        try:
            self.delivery.deliver(notification)
        except Exception:
            logger.exception(
                "Notification delivery failed",
                extra={"json_fields": {"identifier": notification.identifier}},
            )
