"""Utility helpers for the CineList service."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime for storage."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def coerce_int(value: Any, *, default: int | None = None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def coerce_float(value: Any, *, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_release_date(value: Any) -> date | None:
    """Parse TMDB ``YYYY-MM-DD`` dates; blank or malformed values become ``None``."""

    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def paginate(
    page: int | None, limit: int | None, *, default_limit: int, max_limit: int
) -> tuple[int, int]:
    """Return a sanitised ``(offset, limit)`` pair for list queries."""

    page_number = page if page and page > 0 else 1
    size = limit if limit and limit > 0 else default_limit
    size = min(size, max_limit)
    return (page_number - 1) * size, size
