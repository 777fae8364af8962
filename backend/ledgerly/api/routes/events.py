"""Server-Sent Events (SSE) endpoints.

Exposes a statement updates stream backed by Redis pub/sub. The stream
subscribes to the per-user channel that background tasks publish to:
``statements:user:{user_id}``.
"""

from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends
from starlette.responses import StreamingResponse

from ledgerly.api.dependencies import get_current_user, get_redis_client
from ledgerly.core.events import user_channel
from ledgerly.models.tables import User

router = APIRouter(prefix="/events", tags=["events"])

KEEPALIVE_SECONDS = 15.0


async def statement_event_stream(user_id: int, redis_client) -> AsyncIterator[bytes]:
    """Yield events from Redis pub/sub as SSE frames."""
    pubsub = redis_client.pubsub()
    channel = user_channel(user_id)
    await pubsub.subscribe(channel)
    try:
        # Initial comment to confirm connection
        yield b": connected\n\n"
        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=KEEPALIVE_SECONDS)
            if message and message.get("type") == "message":
                data = message.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8", errors="ignore")
                try:
                    json.loads(data)
                    payload = data
                except (TypeError, ValueError):
                    payload = json.dumps({"raw": data})
                yield f"event: statement_update\ndata: {payload}\n\n".encode("utf-8")
            else:
                # Keep-alive comment (ignored by browsers)
                yield b": keep-alive\n\n"
                await asyncio.sleep(0)
    finally:
        try:
            await pubsub.unsubscribe(channel)
        finally:
            await pubsub.close()


@router.get("/statements/stream")
async def statements_stream(
    redis=Depends(get_redis_client),
    user: User = Depends(get_current_user),
):
    """SSE stream of statement events (processing, parsed, failed) for the current user."""
    return StreamingResponse(
        statement_event_stream(user.id, redis),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
