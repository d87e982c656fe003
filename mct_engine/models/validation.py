"""Input validation helpers. All raise ValidationError before any write."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

from mct_engine.errors import ValidationError

DATE_FORMAT = "%Y-%m-%d"
_DAY_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def parse_day(value: Any, field: str = "date") -> date:
    """Accept a ``date`` or a ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _DAY_PATTERN.fullmatch(value):
        try:
            return datetime.strptime(value, DATE_FORMAT).date()
        except ValueError:
            pass
    raise ValidationError(field, f"expected YYYY-MM-DD, got {value!r}")


def format_day(d: date) -> str:
    return d.strftime(DATE_FORMAT)


def parse_timestamp(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(field, f"expected ISO 8601 timestamp, got {value!r}")


def require_count(value: Any, field: str) -> int:
    """Non-negative integer (counts, minutes, durations)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"expected a non-negative integer, got {value!r}")
    if value < 0:
        raise ValidationError(field, f"must be >= 0, got {value}")
    return value


def require_rating(value: Any, field: str) -> int:
    """Integer rating in [0, 100]."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"expected an integer rating, got {value!r}")
    if not 0 <= value <= 100:
        raise ValidationError(field, f"must be within 0-100, got {value}")
    return value


def optional_rating(value: Any, field: str) -> int | None:
    return None if value is None else require_rating(value, field)


def require_choice(value: Any, choices, field: str) -> str:
    if value not in choices:
        raise ValidationError(field, f"must be one of {sorted(choices)}, got {value!r}")
    return value


def require_clock_time(value: Any, field: str) -> str:
    """``HH:MM`` 24-hour wall-clock time."""
    if isinstance(value, str):
        try:
            datetime.strptime(value, "%H:%M")
            return value
        except ValueError:
            pass
    raise ValidationError(field, f"expected HH:MM, got {value!r}")
