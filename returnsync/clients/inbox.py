"""
Inbox scanner.

Searches the inbox for return-related messages, fetches each match and turns
it into a CandidateReturn. Deduplication against the seen-set happens in the
coordinator, not here.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable

import requests
from pydantic import ValidationError

from returnsync import config
from returnsync.clients.oauth import GmailTokenManager
from returnsync.errors import AuthError, DecodeError, NetworkError
from returnsync.models.candidate import CandidateReturn
from returnsync.models.gmail import GmailMessage, GmailMessageListResponse
from returnsync.utils.email_parser import (
    classify_return_email,
    extract_email_body,
    extract_product_name,
    extract_refund_amount,
    extract_retailer_name,
    parse_email_date,
)

logger = logging.getLogger(__name__)

AUTH_FAILURE_CODES = (401, 403)


class InboxScanner:
    """Client for the inbox provider's search and message endpoints."""

    def __init__(
        self,
        token_manager: GmailTokenManager,
        session: requests.Session | None = None,
        base_url: str | None = None,
        query: str | None = None,
        max_pages: int | None = None,
        fetch_concurrency: int | None = None,
        timeout: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.token_manager = token_manager
        self.http = session or requests.Session()
        self.base_url = (base_url or config.GMAIL_API_BASE_URL).rstrip("/")
        self.query = query or config.INBOX_SEARCH_QUERY
        self.max_pages = max_pages or config.INBOX_MAX_PAGES
        self.fetch_concurrency = fetch_concurrency or config.INBOX_FETCH_CONCURRENCY
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def scan(self) -> list[CandidateReturn]:
        """
        Find return candidates in the inbox.

        Returns:
            Candidates in no particular order

        Raises:
            AuthError: If no usable token is available
            NetworkError: If the search itself fails
        """
        message_ids = self.search_message_ids()
        if not message_ids:
            logger.info("Inbox search returned no messages")
            return []

        with ThreadPoolExecutor(max_workers=self.fetch_concurrency) as pool:
            results = list(pool.map(self._fetch_candidate, message_ids))

        candidates = [candidate for candidate in results if candidate is not None]
        logger.info(
            "Inbox scan complete",
            extra={
                "json_fields": {
                    "messages": len(message_ids),
                    "candidates": len(candidates),
                }
            },
        )
        return candidates

    def search_message_ids(self) -> list[str]:
        """Run the search query, following page tokens up to ``max_pages``."""
        message_ids: list[str] = []
        page_token: str | None = None

        for _ in range(self.max_pages):
            params = {"q": self.query}
            if page_token:
                params["pageToken"] = page_token

            data = self._get_json(f"{self.base_url}/messages", params=params)
            try:
                page = GmailMessageListResponse.model_validate(data)
            except ValidationError as e:
                raise DecodeError(f"Invalid message list response: {e}") from e

            message_ids.extend(ref.id for ref in page.messages or [])
            page_token = page.nextPageToken
            if not page_token:
                break

        return message_ids

    def get_message(self, message_id: str) -> GmailMessage:
        data = self._get_json(
            f"{self.base_url}/messages/{message_id}", params={"format": "full"}
        )
        try:
            return GmailMessage.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Invalid message {message_id}: {e}") from e

    def _fetch_candidate(self, message_id: str) -> CandidateReturn | None:
        try:
            message = self.get_message(message_id)
            return self.extract_candidate(message)
        except (NetworkError, DecodeError) as e:
            logger.warning("Skipping message %s: %s", message_id, e)
            return None

    def extract_candidate(self, message: GmailMessage) -> CandidateReturn | None:
        """
        Classify one message and extract candidate fields.

        Returns:
            CandidateReturn, or None if the message is not return-related
        """
        payload = message.payload
        subject = payload.header("subject")
        body = extract_email_body(payload)

        result = classify_return_email(subject, body)
        if not result.should_process:
            logger.debug("Message %s ignored: %s", message.id, result.reason)
            return None

        email_date = (
            message.internal_date
            or parse_email_date(payload.header("date"))
            or self._clock()
        )

        return CandidateReturn(
            email_id=message.id,
            retailer=extract_retailer_name(payload.header("from")),
            product_name=extract_product_name(subject, body),
            refund_amount=extract_refund_amount(body),
            email_date=email_date,
            email_subject=subject,
            email_snippet=message.snippet,
        )

    def _get_json(self, url: str, params: dict[str, str]) -> Any:
        """
        GET with bearer auth. A rejected token gets one forced refresh and retry.
        """
        token = self.token_manager.get_valid_token()
        response = self._send(url, params, token)

        if response.status_code in AUTH_FAILURE_CODES:
            logger.info("Inbox token rejected, refreshing and retrying once")
            token = self.token_manager.refresh(rejected_token=token).access_token
            response = self._send(url, params, token)
            if response.status_code in AUTH_FAILURE_CODES:
                raise AuthError(f"Inbox API rejected refreshed token ({response.status_code})")

        try:
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Inbox request failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Inbox response is not JSON: {e}") from e

    def _send(self, url: str, params: dict[str, str], token: str) -> requests.Response:
        try:
            return self.http.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Inbox request failed: {e}") from e
