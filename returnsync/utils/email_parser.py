"""
Heuristics for turning inbox messages into return candidates.

Keyword classification, MIME body extraction and best-effort extraction of
retailer, product name, refund amount and date. The patterns are tuning
knobs, not a correctness contract.
"""

import base64
import binascii
import logging
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from email.utils import parseaddr
from typing import NamedTuple

from bs4 import BeautifulSoup

from returnsync.errors import DecodeError
from returnsync.models.gmail import GmailMessagePart

logger = logging.getLogger(__name__)

# Case-insensitive substrings that make a message a return candidate
RETURN_KEYWORDS = [
    "return",
    "refund",
    "money back",
    "rma",
    "return merchandise",
    "shipped",
    "order",
    "purchase",
    "receipt",
]

# Display-name noise stripped before a sender name is used as a retailer
RETAILER_SUFFIXES = [
    " Inc",
    " LLC",
    " Ltd",
    " Team",
    " Support",
    " Customer Service",
    " Store",
    " Shop",
    " US",
    " USA",
    " NA",
    " Help",
    " Orders",
    " Receipts",
    " Order Confirmation",
    " noreply",
    " no-reply",
    " Notifications",
    " Info",
    " Mail",
]

RETAILER_PREFIXES = [
    "The ",
    "Order from ",
    "Your Order from ",
    "Receipt from ",
    "orders@",
    "support@",
    "noreply@",
    "no-reply@",
    "info@",
    "customerservice@",
    "notifications@",
]

UNKNOWN_RETAILER = "Unknown Retailer"
UNKNOWN_PRODUCT = "Unknown Product"

# Product name patterns, tried in order; group 1 is the name
SUBJECT_PRODUCT_PATTERNS = [
    r"return.*?for\s+(.+?)\s+confirmed",
    r"your\s+(.+?)\s+return",
    r"return\s+confirmation\s+for\s+(.+)",
    r"refund\s+for\s+(.+)",
]

BODY_PRODUCT_PATTERNS = [
    r"order\s+item[:\s]+(.+?)(?:\n|\.|$)",
    r"item(?:\s+name)?\s*:\s*(.+?)(?:\n|$)",
    r"product(?:\s+name)?\s*:\s*(.+?)(?:\n|$)",
]

MAX_PRODUCT_NAME_LENGTH = 120

_AMOUNT = r"(\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2})"

# Refund amount patterns, tried in order; group 1 is the amount
AMOUNT_PATTERNS = [
    rf"refund\s+amount[:\s]+\$?\s?{_AMOUNT}",
    rf"amount[:\s]+\$?\s?{_AMOUNT}",
    rf"\${_AMOUNT}\s+refund",
    rf"\${_AMOUNT}",
]

# RFC 2822 Date header variants
EMAIL_DATE_FORMATS = [
    "%a, %d %b %Y %H:%M:%S %z",
    "%d %b %Y %H:%M:%S %z",
    "%a, %d %b %Y %H:%M:%S %Z",
]


class FilterResult(NamedTuple):
    """Result of return-email classification."""

    should_process: bool
    reason: str


def classify_return_email(subject: str | None, body: str | None) -> FilterResult:
    """
    Decide whether a message looks return-related.

    Args:
        subject: Subject header
        body: Decoded plain-text body

    Returns:
        FilterResult: (should_process, reason)
    """
    subject_lower = (subject or "").lower()
    body_lower = (body or "").lower()

    for keyword in RETURN_KEYWORDS:
        if keyword in subject_lower:
            return FilterResult(True, f"Subject contains keyword: {keyword}")
        if keyword in body_lower:
            return FilterResult(True, f"Body contains keyword: {keyword}")

    return FilterResult(False, "No return keywords found")


def decode_base64url(data: str) -> str:
    """
    Decode a base64url payload (padding optional) to text.

    Raises:
        DecodeError: If the payload is not valid base64
    """
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64url payload: {e}") from e
    return raw.decode("utf-8", errors="replace")


def find_part_by_mime_type(
    part: GmailMessagePart, mime_type: str
) -> GmailMessagePart | None:
    """Depth-first search of a MIME tree for the first part of ``mime_type``."""
    if part.mimeType.lower() == mime_type:
        return part

    for child in part.parts or []:
        found = find_part_by_mime_type(child, mime_type)
        if found is not None:
            return found

    return None


def html_to_text(html: str) -> str:
    """Strip tags, scripts and styles from an HTML body."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(["script", "style"]):
        tag.decompose()
    return soup.get_text(separator="\n", strip=True)


def _decoded_part(part: GmailMessagePart | None) -> str | None:
    if part is None or not part.body.data:
        return None
    try:
        return decode_base64url(part.body.data)
    except DecodeError as e:
        logger.warning("Skipping undecodable %s part: %s", part.mimeType, e)
        return None


def extract_email_body(payload: GmailMessagePart) -> str:
    """
    Extract readable text from a message payload.

    Prefers text/plain, then text/html with tags stripped, then the raw
    payload body. Returns an empty string if nothing decodes.
    """
    text = _decoded_part(find_part_by_mime_type(payload, "text/plain"))
    if text is not None:
        return text

    html = _decoded_part(find_part_by_mime_type(payload, "text/html"))
    if html is not None:
        return html_to_text(html)

    raw = _decoded_part(payload)
    if raw is not None:
        return raw

    return ""


def cleanup_retailer_name(name: str) -> str:
    """Strip corporate noise from a sender name and title-case it."""
    result = name.replace('"', "").strip()

    for suffix in RETAILER_SUFFIXES:
        if result.lower().endswith(suffix.lower()):
            result = result[: -len(suffix)]

    for prefix in RETAILER_PREFIXES:
        if result.lower().startswith(prefix.lower()):
            result = result[len(prefix):]

    result = result.strip()
    words = result.split(" ")
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def extract_retailer_name(from_header: str) -> str:
    """
    Derive a retailer from a From header.

    Uses the display name when it survives cleanup, otherwise the first
    label of the sender's domain.
    """
    display_name, address = parseaddr(from_header)

    if display_name:
        clean_name = cleanup_retailer_name(display_name)
        if len(clean_name) > 1:
            return clean_name

    if "@" not in address and "@" in from_header:
        address = from_header.strip().strip("<>")

    if "@" in address:
        domain = address.rsplit("@", 1)[1]
        company = domain.split(".", 1)[0]
        clean_domain = cleanup_retailer_name(company)
        if clean_domain:
            return clean_domain

    return UNKNOWN_RETAILER


def _first_match(patterns: list[str], text: str) -> str | None:
    for pattern in patterns:
        match = re.search(pattern, text, re.IGNORECASE | re.MULTILINE)
        if match:
            value = match.group(1).strip().strip(".,;:-").strip()
            if value:
                return value
    return None


def extract_product_name(subject: str, body: str) -> str:
    """Find a product name in the subject, then the body."""
    name = _first_match(SUBJECT_PRODUCT_PATTERNS, subject) or _first_match(
        BODY_PRODUCT_PATTERNS, body
    )
    if not name:
        return UNKNOWN_PRODUCT
    return name[:MAX_PRODUCT_NAME_LENGTH]


def extract_refund_amount(body: str) -> Decimal:
    """Find a refund amount in the body, 0 if none."""
    value = _first_match(AMOUNT_PATTERNS, body)
    if value is None:
        return Decimal("0")
    try:
        return Decimal(value.replace(",", ""))
    except InvalidOperation:
        return Decimal("0")


def parse_email_date(value: str) -> datetime | None:
    """
    Parse a Date header against the supported formats.

    Returns:
        Timezone-aware datetime, or None if no format matches
    """
    if not value:
        return None

    # Drop trailing comments such as "(UTC)" or "(PDT)"
    cleaned = re.sub(r"\s*\([^)]*\)\s*$", "", value.strip())

    for fmt in EMAIL_DATE_FORMATS:
        try:
            parsed = datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    return None
