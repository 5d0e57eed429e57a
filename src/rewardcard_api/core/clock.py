"""Timezone helpers; SQLite hands back naive datetimes for timezone-aware columns."""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_aware(datetime.fromisoformat(value))


def from_unix(value: int | float | None) -> datetime | None:
    """Convert a Stripe epoch-seconds field into an aware datetime."""

    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
