"""Shared input validators and phone-number helpers."""

import re
from datetime import time

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def phone_digits(phone: str) -> str:
    """Strip every non-digit character from a phone number.

    Args:
        phone: Raw phone input (may carry ``whatsapp:`` or ``+``).

    Returns:
        Digits only.
    """
    return re.sub(r"\D", "", phone or "")


def validate_phone(phone: str) -> bool:
    """Validate a phone number has at least 10 digits.

    Args:
        phone: Raw phone input.

    Returns:
        True if the phone has at least 10 digits.
    """
    return len(phone_digits(phone)) >= 10


def to_e164(phone: str) -> str:
    """Format a phone number as E.164, defaulting to the US country code.

    Args:
        phone: Raw phone input.

    Returns:
        ``+`` followed by digits; ten-digit numbers get ``+1``.
    """
    digits = phone_digits(phone)
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def validate_hhmm(value: str) -> bool:
    """Validate an HH:MM 24-hour clock string.

    Args:
        value: Clock string such as "09:00".

    Returns:
        True if well formed.
    """
    return bool(_HHMM_RE.match(value or ""))


def parse_hhmm(value: str) -> time:
    """Parse an HH:MM string into a time.

    Args:
        value: Clock string such as "17:30".

    Returns:
        Parsed time.

    Raises:
        ValueError: If the string is not HH:MM.
    """
    match = _HHMM_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid HH:MM time: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))
