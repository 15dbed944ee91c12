"""
Type coercion helpers for mapping decoded records onto table columns.

Coercion is the only "validation" applied: values that do not fit a column
become ``None`` rather than failing the batch.
"""

import math
from datetime import date, datetime
from typing import Any, Optional

MAX_ABS_NUMBER = 1e9


def to_float(value: Any, max_abs: float = MAX_ABS_NUMBER) -> Optional[float]:
    """Parse a float; non-finite or out-of-range values become None"""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (ValueError, TypeError):
        return None
    if not math.isfinite(number) or abs(number) > max_abs:
        return None
    return number


def to_int(value: Any, max_abs: float = 2 ** 31 - 1) -> Optional[int]:
    """Parse an int (``"10.0"`` included); values outside INTEGER range become None"""
    number = to_float(value, max_abs=max_abs)
    if number is None:
        return None
    return int(number)


def to_bool(value: Any) -> bool:
    return value is True or value == "true" or value == 1


def to_date(value: Any) -> Optional[date]:
    """Parse an ISO ``YYYY-MM-DD`` date (a full timestamp is truncated)"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)
