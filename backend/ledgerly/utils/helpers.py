"""Miscellaneous helper functions."""

from __future__ import annotations

import datetime as dt
import re
from typing import Any, Optional

from croniter import croniter


def parse_iso_datetime(value: str | None) -> Optional[dt.datetime]:
    """Parse an ISO8601 datetime string into a :class:`datetime` object.

    The standard ``datetime.fromisoformat`` helper does not accept a lowercase
    ``z`` as the UTC designator on older interpreters. This function normalises
    that case and returns ``None`` if the value cannot be parsed.
    """
    if not value:
        return None
    try:
        if value.endswith("z") or value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return dt.datetime.fromisoformat(value)
    except ValueError:
        return None


def utcnow() -> dt.datetime:
    return dt.datetime.utcnow()


def utcnow_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def elapsed_ms(started_at: Optional[dt.datetime], now: Optional[dt.datetime] = None) -> int:
    """Milliseconds since ``started_at`` (0 when unknown)."""
    if not started_at:
        return 0
    now = now or utcnow()
    return int((now - started_at).total_seconds() * 1000)


def truncate(value: Optional[str], length: int, omission: str = "...") -> Optional[str]:
    if value is None or len(value) <= length:
        return value
    return value[: max(length - len(omission), 0)] + omission


def slugify(value: str) -> str:
    """Lowercase, hyphen-separated slug (``"Food & Dining"`` -> ``"food-dining"``)."""
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower())
    return slug.strip("-")


def humanize(value: str) -> str:
    """``"send_notification"`` -> ``"Send notification"``."""
    text = (value or "").replace("_", " ").strip()
    return text[:1].upper() + text[1:]


def dig(data: Any, path: str) -> Any:
    """Resolve a dot path (``"trigger_data.amount"``) through nested mappings/lists."""
    current = data
    for part in str(path).split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            idx = int(part)
            current = current[idx] if idx < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def is_valid_cron(expression: Optional[str]) -> bool:
    """True for a five-field cron expression croniter can parse (names such as ``MON-FRI`` included)."""
    if not isinstance(expression, str) or len(expression.split()) != 5:
        return False
    return croniter.is_valid(expression)
