"""
Tests for the inbox scanner: search pagination, auth retry and candidate extraction.
"""

import base64
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from returnsync.clients.inbox import InboxScanner
from returnsync.errors import AuthError, NetworkError
from returnsync.models.oauth import OAuthSession

BASE_URL = "https://gmail.test/gmail/v1/users/me"
SEARCH_URL = f"{BASE_URL}/messages"


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_message(
    message_id: str,
    subject: str,
    body: str,
    sender: str,
    internal_date: str | None = None,
    date_header: str | None = None,
) -> dict:
    headers = [
        {"name": "Subject", "value": subject},
        {"name": "From", "value": sender},
    ]
    if date_header:
        headers.append({"name": "Date", "value": date_header})
    return {
        "id": message_id,
        "threadId": message_id,
        "snippet": body[:40],
        "internalDate": internal_date,
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": headers,
            "parts": [{"mimeType": "text/plain", "body": {"data": b64url(body)}}],
        },
    }


MESSAGES = {
    "m1": make_message(
        "m1",
        "Your return has been received",
        "Refund amount: $120.00\nItem: Air Max 90",
        '"Nike Store" <orders@nike.com>',
        internal_date="1769421600000",
    ),
    "m2": make_message(
        "m2", "Weekly newsletter", "Check out our deals", "News <news@example.com>"
    ),
    "m3": make_message(
        "m3",
        "Refund for Wireless Headphones",
        "We issued $45.00 to your card",
        '"Best Buy Support" <support@bestbuy.com>',
        date_header="Mon, 26 Jan 2026 09:00:00 +0000",
    ),
    "m4": make_message("m4", "RMA 5521 approved", "Ship it back", "orders@target.com"),
}


def make_response(payload=None, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(str(status_code))
    return response


class FakeGmail:
    """Routes GETs to canned search pages and messages."""

    def __init__(self, pages: list[dict], messages: dict[str, dict]):
        self.pages = {page.get("_token"): page for page in pages}
        self.messages = messages
        self.failing: set[str] = set()
        self.search_params: list[dict] = []

    def get(self, url, params=None, headers=None, timeout=None):
        if url == SEARCH_URL:
            self.search_params.append(dict(params))
            page = dict(self.pages[params.get("pageToken")])
            page.pop("_token", None)
            return make_response(page)

        message_id = url.rsplit("/", 1)[1]
        if message_id in self.failing:
            return make_response(status_code=500)
        return make_response(self.messages[message_id])


@pytest.fixture
def token_manager() -> MagicMock:
    manager = MagicMock()
    manager.get_valid_token.return_value = "at-1"
    manager.refresh.return_value = OAuthSession(access_token="at-2", refresh_token="rt-1")
    return manager


def make_scanner(token_manager, gmail: FakeGmail, clock, max_pages: int = 5) -> tuple[InboxScanner, MagicMock]:
    http = MagicMock()
    http.get.side_effect = gmail.get
    scanner = InboxScanner(
        token_manager,
        session=http,
        base_url=BASE_URL,
        query="subject:(return) newer_than:100d",
        max_pages=max_pages,
        fetch_concurrency=2,
        clock=clock,
    )
    return scanner, http


class TestScan:
    def test_extracts_candidates(self, token_manager, clock):
        gmail = FakeGmail(
            [{"messages": [{"id": m} for m in MESSAGES]}],
            MESSAGES,
        )
        scanner, _ = make_scanner(token_manager, gmail, clock)

        candidates = {c.email_id: c for c in scanner.scan()}

        # The newsletter is not return-related
        assert set(candidates) == {"m1", "m3", "m4"}

        nike = candidates["m1"]
        assert nike.retailer == "Nike"
        assert nike.product_name == "Air Max 90"
        assert nike.refund_amount == Decimal("120.00")
        assert nike.email_subject == "Your return has been received"
        assert nike.email_date == datetime(2026, 1, 26, 10, 0, tzinfo=timezone.utc)

        best_buy = candidates["m3"]
        assert best_buy.retailer == "Best Buy"
        assert best_buy.product_name == "Wireless Headphones"
        assert best_buy.refund_amount == Decimal("45.00")
        assert best_buy.email_date == datetime(2026, 1, 26, 9, 0, tzinfo=timezone.utc)

        target = candidates["m4"]
        assert target.retailer == "Target"
        assert target.product_name == "Unknown Product"
        assert target.refund_amount == Decimal("0")
        assert target.email_date == clock.now

    def test_search_query_and_auth_header(self, token_manager, clock):
        gmail = FakeGmail([{"messages": []}], {})
        scanner, http = make_scanner(token_manager, gmail, clock)

        assert scanner.scan() == []
        assert gmail.search_params == [{"q": "subject:(return) newer_than:100d"}]
        assert http.get.call_args.kwargs["headers"] == {"Authorization": "Bearer at-1"}

    def test_follows_pagination(self, token_manager, clock):
        gmail = FakeGmail(
            [
                {"messages": [{"id": "m1"}], "nextPageToken": "p2"},
                {"_token": "p2", "messages": [{"id": "m3"}]},
            ],
            MESSAGES,
        )
        scanner, _ = make_scanner(token_manager, gmail, clock)

        candidates = scanner.scan()

        assert sorted(c.email_id for c in candidates) == ["m1", "m3"]
        assert gmail.search_params[1]["pageToken"] == "p2"

    def test_pagination_capped(self, token_manager, clock):
        gmail = FakeGmail(
            [
                {"messages": [{"id": "m1"}], "nextPageToken": "p2"},
                {"_token": "p2", "messages": [{"id": "m3"}]},
            ],
            MESSAGES,
        )
        scanner, _ = make_scanner(token_manager, gmail, clock, max_pages=1)

        assert [c.email_id for c in scanner.scan()] == ["m1"]
        assert len(gmail.search_params) == 1

    def test_failed_message_is_skipped(self, token_manager, clock):
        gmail = FakeGmail([{"messages": [{"id": "m1"}, {"id": "m3"}]}], MESSAGES)
        gmail.failing.add("m1")
        scanner, _ = make_scanner(token_manager, gmail, clock)

        assert [c.email_id for c in scanner.scan()] == ["m3"]

    def test_search_failure_raises(self, token_manager, clock):
        http = MagicMock()
        http.get.return_value = make_response(status_code=500)
        scanner = InboxScanner(token_manager, session=http, base_url=BASE_URL, clock=clock)

        with pytest.raises(NetworkError):
            scanner.scan()

    def test_not_connected(self, token_manager, clock):
        token_manager.get_valid_token.side_effect = AuthError("Inbox account is not connected")
        scanner = InboxScanner(token_manager, session=MagicMock(), base_url=BASE_URL, clock=clock)

        with pytest.raises(AuthError):
            scanner.scan()


class TestAuthRetry:
    def test_401_refreshes_once_and_retries(self, token_manager, clock):
        http = MagicMock()
        http.get.side_effect = [
            make_response(status_code=401),
            make_response({"messages": []}),
        ]
        scanner = InboxScanner(token_manager, session=http, base_url=BASE_URL, clock=clock)

        assert scanner.scan() == []
        token_manager.refresh.assert_called_once_with(rejected_token="at-1")
        assert http.get.call_args_list[1].kwargs["headers"] == {"Authorization": "Bearer at-2"}

    def test_second_401_raises(self, token_manager, clock):
        http = MagicMock()
        http.get.return_value = make_response(status_code=401)
        scanner = InboxScanner(token_manager, session=http, base_url=BASE_URL, clock=clock)

        with pytest.raises(AuthError):
            scanner.scan()
        token_manager.refresh.assert_called_once()
        assert http.get.call_count == 2
