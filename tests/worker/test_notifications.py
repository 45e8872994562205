"""
Tests for the notification trigger and delivery collaborators.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from returnsync.models.item import RefundStatus, TrackedItem, TrackingStatus
from returnsync.models.notification import Notification, NotificationType
from returnsync.worker.notifications import (
    DeadlineWarning,
    LoggingNotificationDelivery,
    NotificationDelivery,
    NotificationTrigger,
    WebhookNotificationDelivery,
    due_deadline_warning,
)


@pytest.fixture
def item() -> TrackedItem:
    return TrackedItem(
        id="item-1",
        product_name="Air Max 90",
        retailer="Nike",
        refund_amount=Decimal("120.00"),
        refund_status=RefundStatus.SHIPPED,
        tracking_number="1Z999AA10123456784",
    )


@pytest.fixture
def trigger(delivery) -> NotificationTrigger:
    return NotificationTrigger(delivery)


class TestTrackingTransition:
    def test_delivered(self, trigger, delivery, item):
        sent = trigger.on_tracking_transition(
            item, TrackingStatus.IN_TRANSIT, TrackingStatus.DELIVERED
        )

        assert delivery.sent == [sent]
        assert sent.title == "Return Status Update"
        assert sent.body == "✅ Your return to Nike has been delivered!"
        assert sent.subtitle == "Air Max 90 - Check for refund processing"
        assert sent.identifier == "tracking_item-1_delivered"
        assert sent.payload == {
            "type": "tracking_update",
            "item_id": "item-1",
            "new_status": "delivered",
            "retailer": "Nike",
        }
        assert sent.type == NotificationType.TRACKING_UPDATE

    @pytest.mark.parametrize(
        "old,status,body,subtitle",
        [
            (
                TrackingStatus.IN_TRANSIT,
                TrackingStatus.PENDING,
                "⏳ Your return to Nike is being processed",
                "Air Max 90",
            ),
            (
                TrackingStatus.PENDING,
                TrackingStatus.IN_TRANSIT,
                "📦 Your return to Nike is now in transit",
                "Air Max 90",
            ),
            (
                TrackingStatus.IN_TRANSIT,
                TrackingStatus.OUT_FOR_DELIVERY,
                "🚚 Your return to Nike is out for delivery",
                "Air Max 90",
            ),
            (
                TrackingStatus.IN_TRANSIT,
                TrackingStatus.EXCEPTION,
                "⚠️ Issue with your return to Nike",
                "Air Max 90 - Check tracking details",
            ),
        ],
    )
    def test_templates(self, trigger, item, old, status, body, subtitle):
        sent = trigger.on_tracking_transition(item, old, status)
        assert sent.body == body
        assert sent.subtitle == subtitle

    def test_no_previous_status(self, trigger, delivery, item):
        assert trigger.on_tracking_transition(item, None, TrackingStatus.DELIVERED) is None
        assert delivery.sent == []

    @pytest.mark.parametrize("status", list(TrackingStatus))
    def test_from_unknown(self, trigger, delivery, item, status):
        assert trigger.on_tracking_transition(item, TrackingStatus.UNKNOWN, status) is None
        assert delivery.sent == []

    def test_unchanged_status(self, trigger, delivery, item):
        assert (
            trigger.on_tracking_transition(
                item, TrackingStatus.IN_TRANSIT, TrackingStatus.IN_TRANSIT
            )
            is None
        )
        assert delivery.sent == []

    def test_transition_to_unknown(self, trigger, delivery, item):
        assert (
            trigger.on_tracking_transition(
                item, TrackingStatus.IN_TRANSIT, TrackingStatus.UNKNOWN
            )
            is None
        )
        assert delivery.sent == []


class TestCandidatesFound:
    def test_none_found(self, trigger, delivery):
        assert trigger.on_candidates_found(0) is None
        assert delivery.sent == []

    def test_plural(self, trigger, delivery):
        sent = trigger.on_candidates_found(3)

        assert delivery.sent == [sent]
        assert sent.title == "New Returns Found"
        assert sent.body == "Found 3 new potential returns in your email"
        assert sent.payload == {"type": "new_returns_found", "count": 3}

    def test_singular(self, trigger):
        assert trigger.on_candidates_found(1).body == "Found 1 new potential return in your email"


class TestDeadlineWarnings:
    NOW = datetime(2026, 1, 26, 10, 0, tzinfo=timezone.utc)
    MARKS = [23, 3, 1]

    @pytest.fixture
    def pending(self) -> TrackedItem:
        return TrackedItem(
            id="item-2",
            product_name="Denim Jacket",
            retailer="Gap",
            return_deadline=self.NOW + timedelta(days=23),
        )

    @pytest.mark.parametrize(
        "remaining,expected",
        [
            (timedelta(days=30), None),
            (timedelta(days=23), DeadlineWarning(threshold=23, days_left=23)),
            (timedelta(days=10), DeadlineWarning(threshold=23, days_left=10)),
            (timedelta(days=2, hours=1), DeadlineWarning(threshold=3, days_left=3)),
            (timedelta(hours=5), DeadlineWarning(threshold=1, days_left=1)),
            (timedelta(hours=-1), None),
        ],
    )
    def test_due_warning(self, pending, remaining, expected):
        pending.return_deadline = self.NOW + remaining
        assert due_deadline_warning(pending, self.NOW, self.MARKS) == expected

    def test_no_warning_once_shipped(self, pending):
        pending.refund_status = RefundStatus.SHIPPED
        assert due_deadline_warning(pending, self.NOW, self.MARKS) is None

    def test_no_warning_without_deadline(self, item):
        assert due_deadline_warning(item, self.NOW, self.MARKS) is None

    def test_naive_deadline_is_utc(self, pending):
        pending.return_deadline = datetime(2026, 1, 27, 9, 0)
        assert due_deadline_warning(pending, self.NOW, self.MARKS).days_left == 1

    def test_reminder(self, trigger, delivery, pending):
        sent = trigger.on_deadline_approaching(
            pending, DeadlineWarning(threshold=23, days_left=23)
        )

        assert delivery.sent == [sent]
        assert sent.title == "Return Deadline Reminder"
        assert sent.body == "⏰ 23 days left to return Denim Jacket to Gap"
        assert sent.type == NotificationType.DEADLINE_WARNING
        assert sent.payload == {
            "type": "deadline_warning",
            "item_id": "item-2",
            "days_left": 23,
            "urgency": "normal",
        }
        assert sent.identifier == "deadline_item-2_23days"

    def test_urgent(self, trigger, pending):
        sent = trigger.on_deadline_approaching(pending, DeadlineWarning(threshold=3, days_left=2))

        assert sent.title == "Return Deadline Soon!"
        assert sent.body == "⚠️ Only 2 days left to return Denim Jacket to Gap"
        assert sent.payload["urgency"] == "urgent"
        assert sent.identifier == "deadline_item-2_3days"

    def test_last_day(self, trigger, pending):
        sent = trigger.on_deadline_approaching(pending, DeadlineWarning(threshold=1, days_left=1))

        assert sent.title == "Final Return Warning!"
        assert sent.body == "🚨 Last day to return Denim Jacket to Gap!"
        assert sent.payload["urgency"] == "critical"


class TestDelivery:
    def test_delivery_errors_are_swallowed(self, item):
        class BrokenDelivery(NotificationDelivery):
            def deliver(self, notification: Notification) -> None:
                raise RuntimeError("push service down")

        trigger = NotificationTrigger(BrokenDelivery())

        sent = trigger.on_tracking_transition(
            item, TrackingStatus.IN_TRANSIT, TrackingStatus.DELIVERED
        )
        assert sent is not None

    def test_default_delivery_logs(self, caplog):
        caplog.set_level(logging.INFO, logger="returnsync.worker.notifications")

        NotificationTrigger().on_candidates_found(2)

        assert "New Returns Found" in caplog.text

    def test_logging_delivery(self, caplog):
        caplog.set_level(logging.INFO, logger="returnsync.worker.notifications")
        LoggingNotificationDelivery().deliver(Notification(title="Hello", body="World"))
        assert "Hello" in caplog.text

    def test_webhook_posts_json(self):
        http = MagicMock()
        webhook = WebhookNotificationDelivery("https://push.example.com/hook", session=http)

        webhook.deliver(
            Notification(
                title="New Returns Found",
                body="Found 2 new potential returns in your email",
                payload={"type": "new_returns_found", "count": 2},
            )
        )

        url = http.post.call_args.args[0]
        body = http.post.call_args.kwargs["json"]
        assert url == "https://push.example.com/hook"
        assert body["payload"] == {"type": "new_returns_found", "count": 2}
        assert body["title"] == "New Returns Found"

    def test_webhook_failure_does_not_reach_trigger_caller(self, item):
        http = MagicMock()
        http.post.return_value.raise_for_status.side_effect = requests.HTTPError("502")
        trigger = NotificationTrigger(
            WebhookNotificationDelivery("https://push.example.com/hook", session=http)
        )

        sent = trigger.on_candidates_found(1)

        assert sent is not None
        http.post.assert_called_once()
