"""Shared utility functions used by services, models and blueprints.

parse_date_input:  raises ValueError on bad input (validation, scope bounds)
parse_datetime:    ISO datetime or date → naive UTC datetime
old_input:         request payload echoed back on failures, secrets removed
to_db_int:         integer in the range an INTEGER column can hold
"""
from datetime import date, datetime, timezone

_SENSITIVE_FIELDS = frozenset({"password", "password_confirmation", "current_password"})

# Signed 64-bit, the widest INTEGER the database accepts
DB_INT_MIN = -(2 ** 63)
DB_INT_MAX = 2 ** 63 - 1


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Empty input returns None so callers can tell "missing" from "invalid".
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError(
            "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


def parse_datetime(value):
    """Parse an ISO datetime (or bare date) into a naive UTC datetime.

    Raises ValueError on bad input; empty input returns None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip())
        except ValueError as exc:
            raise ValueError("Invalid datetime format. Use ISO 8601.") from exc
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def old_input(data: dict | None) -> dict:
    """Return the submitted payload without secrets, for re-displaying a form."""
    return {k: v for k, v in (data or {}).items() if k not in _SENSITIVE_FIELDS}


def to_db_int(value) -> int:
    """Parse ``value`` as an integer a database column can store.

    Raises ValueError for booleans, fractional floats and anything outside
    the signed 64-bit range; TypeError for non-numeric types such as None.
    """
    if isinstance(value, bool):
        raise ValueError(f"{value!r} is not an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{value!r} is not a whole number")
    number = int(value)
    if not DB_INT_MIN <= number <= DB_INT_MAX:
        raise ValueError(f"{value!r} is out of range")
    return number
