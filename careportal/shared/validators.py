"""Shared validation and normalization utilities"""

import re
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as naive UTC, matching how DateTime columns are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp from a provider payload into naive UTC.

    Args:
        value: Timestamp such as "2025-06-01T12:00:00Z" or with an offset

    Returns:
        Naive UTC datetime, or None when the value is empty or unparseable
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def validate_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize an international phone number to E.164.

    Args:
        phone: Phone number string in various formats

    Returns:
        Normalized phone number (+CCCNNN...)

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    has_plus = phone.strip().startswith("+")
    digits = re.sub(r"\D", "", phone)

    if not has_plus and digits.startswith("00"):
        digits = digits[2:]

    if len(digits) < 8 or len(digits) > 15:
        raise ValueError("Phone number must have between 8 and 15 digits")

    return f"+{digits}"


def to_minor_units(amount: float) -> int:
    """Convert a major-unit amount (e.g. naira) to minor units (e.g. kobo)"""
    return int(round(amount * 100))


def from_minor_units(amount: Optional[int]) -> Optional[float]:
    """Convert a gateway minor-unit amount to major units"""
    if amount is None:
        return None
    return round(int(amount) / 100, 2)
