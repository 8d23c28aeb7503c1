"""Helpers for turning asyncpg records into JSON-ready dicts."""
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

def serialize_value(value: Any) -> Any:
    """Convert a database value into a JSON-compatible value."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value

def affected_rows(result: str) -> int:
    """Number of rows reported by a command status such as 'UPDATE 3'."""
    try:
        return int(result.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0
