"""Timestamp helpers; every stored or emitted timestamp is ISO 8601 in UTC."""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def serialize_datetime(value: datetime | None) -> str | None:
    """Render ``value`` as ISO 8601; aware values are converted to UTC first."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.isoformat()


def parse_datetime(value: str | None) -> datetime | None:
    """Inverse of :func:`serialize_datetime`; naive input is taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


__all__ = ["parse_datetime", "serialize_datetime", "utcnow"]
