"""Shared OpenAI client for the embedding and LLM services."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import openai
from openai import AsyncOpenAI

from ledgerly.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
BASE_RETRY_DELAY = 2.0

_client: Optional[AsyncOpenAI] = None


def openai_configured() -> bool:
    return bool(settings.OPENAI_API_KEY) or _client is not None


def get_openai_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_SECONDS)
    return _client


def set_openai_client(client) -> None:
    """Swap the client (tests pass a dummy, ``None`` resets)."""
    global _client
    _client = client


async def with_rate_limit_retry(
    call: Callable[[], Awaitable[T]],
    label: str,
    retries: int = MAX_RETRIES,
    base_delay: float = BASE_RETRY_DELAY,
) -> T:
    """Await ``call()``, backing off exponentially on 429 responses."""
    attempt = 0
    while True:
        try:
            return await call()
        except openai.RateLimitError:
            if attempt >= retries:
                raise
            delay = base_delay * (2 ** attempt)
            attempt += 1
            logger.warning("%s rate limited, retrying in %.1fs (%d/%d)", label, delay, attempt, retries)
            await asyncio.sleep(delay)
