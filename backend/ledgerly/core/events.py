"""Redis pub/sub publisher for statement progress events.

Background work publishes JSON events on two channels:
``statements:user:{user_id}`` (everything for one user, consumed by the
``/events/statements/stream`` endpoint) and
``statements:statement:{statement_id}``. Publishing is fire-and-forget:
a missing or unreachable Redis never fails the work that emits the event.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import redis

from ledgerly.core.config import settings

logger = logging.getLogger(__name__)

_redis_pub = None


def _get_redis_pub():
    global _redis_pub
    if _redis_pub is None:
        try:
            _redis_pub = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        except Exception as exc:
            logger.warning("Redis publisher unavailable: %s", exc)
            _redis_pub = False
    return _redis_pub


def set_publisher(client) -> None:
    """Replace the publisher (tests pass a recorder, ``None`` resets)."""
    global _redis_pub
    _redis_pub = client


def user_channel(user_id: int) -> str:
    return f"statements:user:{user_id}"


def statement_channel(statement_id: int) -> str:
    return f"statements:statement:{statement_id}"


def publish_statement_event(
    user_id: int, statement_id: int, event_type: str, data: Optional[Dict[str, Any]] = None
) -> None:
    pub = _get_redis_pub()
    if not pub:
        return
    payload = json.dumps(
        {"type": event_type, "user_id": user_id, "statement_id": statement_id, **(data or {})},
        default=str,
    )
    try:
        pub.publish(user_channel(user_id), payload)
        pub.publish(statement_channel(statement_id), payload)
    except Exception as exc:
        logger.warning("Failed to publish %s for statement %s: %s", event_type, statement_id, exc)
