"""
Carrier detection from tracking number shape.
"""

from returnsync.models.item import Carrier

# Tracking number prefixes, matched longest first
CARRIER_PREFIXES: dict[str, Carrier] = {
    "1Z": Carrier.UPS,
    "9400": Carrier.USPS,
    "9205": Carrier.USPS,
    "9407": Carrier.USPS,
    "94": Carrier.USPS,
    "92": Carrier.USPS,
    "93": Carrier.USPS,
    "96": Carrier.USPS,
    "FDX": Carrier.FEDEX,
    "DHL": Carrier.DHL,
}

# All-numeric FedEx tracking numbers come in these lengths
FEDEX_NUMERIC_LENGTHS = (12, 15)

_PREFIXES_LONGEST_FIRST = sorted(CARRIER_PREFIXES, key=len, reverse=True)


def normalize_tracking_number(tracking_number: str) -> str:
    """Strip whitespace and upper-case a tracking number."""
    return "".join(tracking_number.split()).upper()


def detect_carrier(tracking_number: str) -> Carrier:
    """
    Detect the carrier for a tracking number.

    Args:
        tracking_number: Raw tracking number

    Returns:
        Carrier, or Carrier.AUTO_DETECT when nothing matches
    """
    number = normalize_tracking_number(tracking_number)

    for prefix in _PREFIXES_LONGEST_FIRST:
        if number.startswith(prefix):
            return CARRIER_PREFIXES[prefix]

    if number.isascii() and number.isdigit() and len(number) in FEDEX_NUMERIC_LENGTHS:
        return Carrier.FEDEX

    return Carrier.AUTO_DETECT
