"""Shared JSON serialization helpers for log output."""

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any


def json_serializer(obj: Any) -> Any:
    """
    JSON ``default=`` hook that keeps numbers numeric.

    - datetime/date -> ISO 8601 string
    - Decimal -> float
    - Path -> string
    - Enums -> value
    - namedtuples -> dict
    - Everything else -> string
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if hasattr(obj, "value"):
        return obj.value
    if hasattr(obj, "_asdict"):
        return obj._asdict()
    return str(obj)
