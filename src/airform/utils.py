from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import orjson
import ulid


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
    return ensure_aware(dt).isoformat()


def parse_dt(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, str) and value:
        try:
            return ensure_aware(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None


def expiry_from_seconds(expires_in: Any) -> datetime | None:
    """Absolute expiry for an OAuth ``expires_in``; ``None`` means non-expiring."""
    if expires_in in (None, ""):
        return None
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        return None
    return now_utc() + timedelta(seconds=seconds)


def dumps_json(value: Any) -> str:
    return orjson.dumps(value).decode("utf-8")


def loads_json(value: str | None) -> Any:
    if not value:
        return None
    return orjson.loads(value)


def new_ulid() -> str:
    value = ulid.new()
    return getattr(value, "str", str(value))
