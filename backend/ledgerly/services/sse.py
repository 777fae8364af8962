"""Server-Sent Events for statement parsing progress.

``ProgressStreamer`` polls the statement row (not Redis) so a client that
connects late still sees the current state; the pub/sub stream in
``api/routes/events.py`` covers live fan-out.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

from sqlalchemy import func, select

from ledgerly.core.config import settings
from ledgerly.core.database import AsyncSessionLocal
from ledgerly.models.enums import StatementStatus
from ledgerly.models.tables import Statement, Transaction

logger = logging.getLogger(__name__)

FINAL_PROGRESS = {"completed", "failed"}
FINAL_STATUSES = {StatementStatus.PARSED.value, StatementStatus.FAILED.value}


class EventFormatter:
    @staticmethod
    def progress_event(statement: Statement, transaction_count: int) -> Dict[str, Any]:
        progress = statement.parsing_progress
        return {
            "id": statement.id,
            "status": statement.status,
            "parsing_status": progress.get("status"),
            "processed": progress.get("processed") or 0,
            "transaction_count": transaction_count,
            "duration_seconds": progress.get("duration_seconds"),
            "updated_at": progress.get("updated_at"),
        }

    @classmethod
    def complete_event(cls, statement: Statement, transaction_count: int) -> Dict[str, Any]:
        return {**cls.progress_event(statement, transaction_count), "completed": True}

    @staticmethod
    def error_event(statement_id: int, error: str, message: Optional[str] = None) -> Dict[str, Any]:
        return {"id": statement_id, "error": error, "message": message or error}

    @classmethod
    def timeout_event(cls, statement_id: int) -> Dict[str, Any]:
        return cls.error_event(
            statement_id, "Connection timeout", "Progress stream timed out after 5 minutes"
        )

    @staticmethod
    def format(event_type: str, data: Dict[str, Any]) -> str:
        return f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"


def is_complete(statement: Statement) -> bool:
    return (
        statement.parsing_progress.get("status") in FINAL_PROGRESS
        or statement.status in FINAL_STATUSES
    )


class ProgressStreamer:
    def __init__(
        self,
        statement_id: int,
        user_id: int,
        session_factory=AsyncSessionLocal,
        poll_interval: Optional[float] = None,
        max_duration: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        formatter=EventFormatter,
    ):
        self.statement_id = statement_id
        self.user_id = user_id
        self.session_factory = session_factory
        self.poll_interval = settings.SSE_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.max_duration = settings.SSE_MAX_DURATION_SECONDS if max_duration is None else max_duration
        self.clock = clock
        self.formatter = formatter

    async def _load(self) -> Optional[Tuple[Statement, int]]:
        async with self.session_factory() as db:
            statement = (
                await db.execute(
                    select(Statement).where(
                        Statement.id == self.statement_id, Statement.user_id == self.user_id
                    )
                )
            ).scalar_one_or_none()
            if statement is None:
                return None
            count = (
                await db.execute(
                    select(func.count(Transaction.id)).where(Transaction.statement_id == self.statement_id)
                )
            ).scalar_one()
            return statement, int(count or 0)

    async def stream(self) -> AsyncIterator[str]:
        started = self.clock()
        loaded = await self._load()
        if loaded is None:
            yield self.formatter.format(
                "error", self.formatter.error_event(self.statement_id, "Statement not found")
            )
            return

        statement, count = loaded
        yield self.formatter.format("progress", self.formatter.progress_event(statement, count))
        last_updated_at = statement.parsing_progress.get("updated_at")

        while not is_complete(statement):
            if self.clock() - started > self.max_duration:
                logger.warning("SSE connection timeout for statement %s", self.statement_id)
                yield self.formatter.format("error", self.formatter.timeout_event(self.statement_id))
                return
            await asyncio.sleep(self.poll_interval)

            loaded = await self._load()
            if loaded is None:
                logger.info("Statement %s deleted while streaming", self.statement_id)
                return
            statement, count = loaded
            current = statement.parsing_progress.get("updated_at")
            if current != last_updated_at:
                yield self.formatter.format("progress", self.formatter.progress_event(statement, count))
                last_updated_at = current

        yield self.formatter.format("complete", self.formatter.complete_event(statement, count))
