"""Small field checks shared by the domain managers.

Each helper returns the normalized value or raises ValidationError with a
message naming the offending field.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from . import ValidationError

def require_text(value: Any, field: str) -> str:
    """Return value stripped, rejecting None and blank strings."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()

def require_choice(value: Any, choices: Iterable[str], field: str) -> str:
    """Return value if it is one of choices."""
    choices = tuple(choices)
    if value not in choices:
        raise ValidationError(
            f"Invalid {field}: {value!r}. Must be one of: {', '.join(choices)}"
        )
    return value

def require_choices(values: Any, choices: Iterable[str], field: str) -> list:
    """Return a de-duplicated list whose members are all in choices."""
    if values is None:
        return []
    if isinstance(values, str) or not isinstance(values, (list, tuple, set)):
        raise ValidationError(f"{field} must be a list")
    result = []
    for value in values:
        require_choice(value, choices, field)
        if value not in result:
            result.append(value)
    return result

def require_amount(value: Any, field: str = 'amount') -> Decimal:
    """Return value as a non-negative Decimal."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    if amount < 0:
        raise ValidationError(f"{field} must be at least 0")
    return amount

def parse_datetime(value: Any, field: str) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime, assuming UTC when naive.

    Returns None for None or an empty string.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid {field}: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
