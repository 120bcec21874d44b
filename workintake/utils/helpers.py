"""Shared utility functions for the workflow services.

as_utc:        normalise SQLite-naive datetimes before comparing with aware ones
utcnow:        single clock source used when callers pass no explicit ``now``
parse_datetime: ISO-8601 input from CLI flags and JSON payloads
get_or_raise:  primary-key lookup that raises NotFoundError instead of returning None
"""
from datetime import datetime, timezone

from workintake.core.exceptions import NotFoundError
from workintake.models import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive.

    SQLite's DateTime columns return naive datetimes; PostgreSQL returns tz-aware.
    All comparisons against an aware ``now`` must go through this helper so the
    same code works in both environments.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def hours_between(start: datetime | None, end: datetime | None) -> float:
    """Elapsed hours from ``start`` to ``end``; 0.0 when either side is missing."""
    if start is None or end is None:
        return 0.0
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600.0


def parse_datetime(value) -> datetime | None:
    """Parse an ISO-8601 string (date or datetime) to an aware UTC datetime.

    Returns None for empty input; raises ValueError on malformed input.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(resource=label or model.__name__, resource_id=pk)
    return obj
