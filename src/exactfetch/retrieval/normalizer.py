"""
Record normalizer — flattens raw API records into scalar mappings.

The API embeds related entities as nested objects and encodes dates as
.NET JSON strings such as ``/Date(1705276800000)/``. Normalized records drop
the former and carry timezone-aware UTC datetimes for the latter.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

# /Date(1705276800000)/, /Date(-86400000)/, /Date(1705276800000+0100)/
_DATE_PATTERN = re.compile(r"^/Date\((-?\d+)(?:[+-]\d{4})?\)/$")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_date_string(value: str) -> datetime | None:
    """Convert a ``/Date(<millis>)/`` string to a UTC datetime, else None."""
    match = _DATE_PATTERN.match(value)
    if not match:
        return None
    try:
        return _EPOCH + timedelta(milliseconds=int(match.group(1)))
    except OverflowError:
        return None


def normalize(raw: dict[str, Any]) -> dict[str, Any]:
    """Drop nested-object fields and decode embedded dates.

    All other values, including None, numbers and unrecognized strings,
    pass through unchanged.
    """
    record: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(value, dict):
            continue
        if isinstance(value, str):
            parsed = parse_date_string(value)
            if parsed is not None:
                value = parsed
        record[key] = value
    return record


def normalize_many(records: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return [normalize(r) for r in records]
