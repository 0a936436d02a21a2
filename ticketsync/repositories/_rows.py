from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable


def make_aware(value: Any) -> datetime | None:
    """Return ``value`` as a UTC-aware datetime.

    MySQL hands back naive datetimes in UTC; SQLite hands back ISO strings.
    """
    if not value:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return None


def coerce_ints(record: dict[str, Any], keys: Iterable[str]) -> None:
    for key in keys:
        if key in record and record[key] is not None:
            record[key] = int(record[key])
