"""Lenient coercion of stored values. None of these raise."""

import math
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional


def first_present(data: Mapping[str, Any], aliases: Iterable[str]) -> Any:
    for name in aliases:
        value = data.get(name)
        if value is not None:
            return value
    return None


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in ("true", "1"):
            return True
        if normalized in ("false", "0"):
            return False
    return None


def to_string_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def to_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _finite(number: Any) -> bool:
    return not isinstance(number, float) or math.isfinite(number)


def to_millis(value: Any) -> Optional[int]:
    """Epoch millis from numbers, datetimes, ``{seconds, nanoseconds}`` maps
    or anything with ``to_millis()``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if _finite(value) else None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, Mapping):
        seconds = first_present(value, ("seconds", "_seconds"))
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            return None
        nanos = first_present(value, ("nanoseconds", "_nanoseconds"))
        if isinstance(nanos, bool) or not isinstance(nanos, (int, float)):
            nanos = 0
        millis = seconds * 1000
        if not (_finite(millis) and _finite(nanos)):
            return None
        return int(millis) + int(nanos) // 1_000_000
    to_millis_method = getattr(value, "to_millis", None)
    if callable(to_millis_method):
        try:
            result = to_millis_method()
        except Exception:
            return None
        if isinstance(result, bool) or not isinstance(result, (int, float)) or not _finite(result):
            return None
        return int(result)
    return None
