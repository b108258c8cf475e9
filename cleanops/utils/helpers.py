"""Shared input-parsing helpers for services and blueprints.

parse_date:   ISO / DD.MM.YYYY date → date (None on bad input)
parse_time:   HH:MM[:SS] → time (None on bad input)
clean_text:   strip + length check for free-text fields
"""
import logging
from datetime import date, datetime, time

from cleanops.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_time(value):
    """Parse a wall-clock time (HH:MM or HH:MM:SS). Returns None for empty/invalid input."""
    if not value:
        return None
    if isinstance(value, time):
        return value
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(str(value).strip(), fmt).time()
        except (ValueError, TypeError):
            continue
    return None


def clean_text(value, field, *, max_len, required=False):
    """Strip a free-text field and enforce its length.

    Raises:
        ValidationError: missing when required, not a string, or too long.
    """
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "invalid"})
    value = value.strip()
    if required and not value:
        raise ValidationError(f"{field} is required", details={field: "required"})
    if len(value) > max_len:
        raise ValidationError(
            f"{field} must be at most {max_len} characters",
            details={field: f"max {max_len}"},
        )
    return value or None
