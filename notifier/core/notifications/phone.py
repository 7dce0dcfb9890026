"""
Phone number normalization for the messaging network.

Customers type numbers in every shape ("(86) 99805-3279", "86998053279",
"+55 86 9 9805 3279"). The network wants digits only, country code first.
"""

import re
from typing import Optional

from notifier.config import get_settings

_NON_DIGITS = re.compile(r"\D")

AREA_CODE_LENGTH = 2
SUBSCRIBER_LENGTH = 8


def normalize_phone(raw: str, country_prefix: Optional[str] = None) -> str:
    """Convert a human-entered phone number to canonical digits.

    Steps:
    1. Strip every non-digit character.
    2. Prepend the country prefix when missing.
    3. When the number is exactly prefix + area code + 9 + 8 digits (13
       digits with "55"), drop the 9 right after the area code; the network
       expects prefix + area code + 8 digits.

    Short or otherwise odd inputs are returned as-is after steps 1-2; the
    transport decides whether the address is deliverable.

    Args:
        raw: Phone number as typed by the customer
        country_prefix: Country calling code (defaults to settings)

    Returns:
        Digits-only number, e.g. "558698053279"

    Example:
        >>> normalize_phone("(86) 99805-3279")
        '558698053279'
        >>> normalize_phone("558698053279")
        '558698053279'
    """
    prefix = country_prefix if country_prefix is not None else get_settings().country_prefix
    digits = _NON_DIGITS.sub("", raw or "")

    if not digits.startswith(prefix):
        digits = prefix + digits

    spurious_length = len(prefix) + AREA_CODE_LENGTH + 1 + SUBSCRIBER_LENGTH
    spurious_at = len(prefix) + AREA_CODE_LENGTH
    if len(digits) == spurious_length and digits[spurious_at] == "9":
        digits = digits[:spurious_at] + digits[spurious_at + 1:]

    return digits


def to_address(normalized: str, suffix: Optional[str] = None) -> str:
    """Append the network suffix to a normalized number."""
    suffix = suffix if suffix is not None else get_settings().address_suffix
    if normalized.endswith(suffix):
        return normalized
    return f"{normalized}{suffix}"
