"""Turn an uploaded statement into transactions.

``StatementParser.parse`` drives the whole import: status transitions,
parser selection, row validation, bulk creation in chunks and progress
reporting (stored under ``statement.meta["parsing_progress"]`` and
published on Redis). Follow-up categorisation and analytics are queued
once the statement is parsed.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core import dispatch
from ledgerly.core.errors import LedgerlyError, ParseError
from ledgerly.core.events import publish_statement_event
from ledgerly.core.observability import sentry_breadcrumb
from ledgerly.models.enums import AnalyticsStatus, StatementStatus
from ledgerly.models.tables import Statement, StatementAnalytic, Transaction
from ledgerly.services.bank_parsers import parser_for
from ledgerly.utils.helpers import utcnow, utcnow_iso

logger = logging.getLogger(__name__)

CHUNK_SIZE = 500
PROGRESS_THROTTLE_SECONDS = 0.5


class ParsingProgress:
    """Writes ``parsing_progress`` into the statement metadata."""

    def __init__(self, statement: Statement):
        self.statement = statement
        self.status = "pending"
        self.total = 0
        self.processed = 0
        self.error: Optional[str] = None
        self._started: Optional[float] = None
        self._last_write = 0.0

    def start(self, total: int = 0) -> None:
        self.status = "processing"
        self.total = total
        self._started = time.monotonic()
        self._write()

    def update(self, processed: int) -> None:
        self.processed = processed
        if time.monotonic() - self._last_write >= PROGRESS_THROTTLE_SECONDS:
            self._write()

    def complete(self, processed: int) -> None:
        self.processed = processed
        self.total = max(self.total, processed)
        self.status = "completed"
        self._write()

    def fail(self, error: str) -> None:
        self.status = "failed"
        self.error = error
        self._write()

    def snapshot(self) -> Dict[str, Any]:
        percentage = int(self.processed * 100 / self.total) if self.total else 0
        if self.status == "completed":
            percentage = 100
        progress = {
            "status": self.status,
            "total": self.total,
            "processed": self.processed,
            "percentage": min(percentage, 100),
            "updated_at": utcnow_iso(),
            "duration_seconds": round(time.monotonic() - self._started, 2) if self._started else None,
        }
        if self.error:
            progress["error"] = self.error
        return progress

    def _write(self) -> None:
        # Reassign so SQLAlchemy notices the JSON change.
        self.statement.meta = {**(self.statement.meta or {}), "parsing_progress": self.snapshot()}
        self._last_write = time.monotonic()


class StatementParser:
    def __init__(self, db: AsyncSession, statement: Statement):
        self.db = db
        self.statement = statement
        self.progress = ParsingProgress(statement)

    async def parse(self) -> Dict[str, Any]:
        statement = self.statement
        statement.status = StatementStatus.PROCESSING.value
        statement.error_message = None
        self.progress.start()
        await self.db.commit()
        self._publish("statement.processing")

        try:
            rows = self._parse_rows()
            if not rows:
                raise ParseError("No transactions found in statement")

            self.progress.total = len(rows)
            created = await self._create_transactions(rows)
            if created == 0:
                raise ParseError("No transactions found in statement")
        except LedgerlyError as exc:
            await self._fail(exc.message)
            return {"success": False, "error": exc.message}
        except Exception as exc:
            logger.exception("Statement %s parsing crashed", statement.id)
            await self._fail(str(exc))
            raise

        statement.status = StatementStatus.PARSED.value
        statement.parsed_at = utcnow()
        self.progress.complete(created)
        await self.db.commit()
        self._publish("statement.parsed", {"transaction_count": created})
        sentry_breadcrumb(category="statements", message="statement.parsed", data={"count": created})
        logger.info("Parsed statement %s: %d transactions", statement.id, created)

        await self._queue_followups()
        return {"success": True, "transaction_count": created}

    def _parse_rows(self) -> List[Dict[str, Any]]:
        statement = self.statement
        if not statement.content:
            raise ParseError("No file attached")
        parser_cls = parser_for(statement.bank_template)
        logger.info("Using %s for statement %s", parser_cls.__name__, statement.id)
        parser = parser_cls(statement.content, statement.file_type, statement.bank_template)
        rows = parser.parse()
        if parser.errors:
            raise ParseError("; ".join(parser.errors))
        return rows

    async def _create_transactions(self, rows: List[Dict[str, Any]]) -> int:
        statement = self.statement
        created = 0
        buffer: List[Transaction] = []
        for data in rows:
            if not data.get("transaction_date") or not data.get("amount") or float(data["amount"]) <= 0:
                continue
            buffer.append(
                Transaction(
                    user_id=statement.user_id,
                    workspace_id=statement.workspace_id,
                    statement_id=statement.id,
                    account_id=statement.account_id,
                    transaction_date=data["transaction_date"],
                    description=data.get("description") or data.get("original_description") or "",
                    original_description=data.get("original_description"),
                    amount=abs(float(data["amount"])),
                    transaction_type=data["transaction_type"],
                    balance=data.get("balance"),
                    reference=data.get("reference"),
                    meta=data.get("metadata") or {},
                )
            )
            if len(buffer) >= CHUNK_SIZE:
                created += await self._flush(buffer)
        if buffer:
            created += await self._flush(buffer)
        return created

    async def _flush(self, buffer: List[Transaction]) -> int:
        count = len(buffer)
        self.db.add_all(buffer)
        await self.db.flush()
        buffer.clear()
        self.progress.update(self.progress.processed + count)
        return count

    async def _fail(self, message: str) -> None:
        await self.db.rollback()
        statement = self.statement
        await self.db.refresh(statement)
        statement.status = StatementStatus.FAILED.value
        statement.error_message = message
        self.progress.fail(message)
        await self.db.commit()
        self._publish("statement.failed", {"error": message})
        logger.warning("Statement %s failed: %s", statement.id, message)

    async def _queue_followups(self) -> None:
        statement = self.statement
        ids = (
            await self.db.execute(select(Transaction.id).where(Transaction.statement_id == statement.id))
        ).scalars().all()
        if ids:
            dispatch.enqueue("categorize_transactions", list(ids), statement.user_id)
        await queue_analytics(self.db, statement.id)

    def _publish(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        payload = {"status": self.statement.status, "progress": self.statement.parsing_progress}
        payload.update(data or {})
        publish_statement_event(self.statement.user_id, self.statement.id, event_type, payload)


async def queue_analytics(db: AsyncSession, statement_id: int) -> bool:
    """Queue analytics computation unless it is already queued or running."""
    analytic = (
        await db.execute(select(StatementAnalytic).where(StatementAnalytic.statement_id == statement_id))
    ).scalar_one_or_none()
    if analytic is None:
        analytic = StatementAnalytic(statement_id=statement_id, payload={})
        db.add(analytic)
    elif analytic.status in (AnalyticsStatus.QUEUED.value, AnalyticsStatus.RUNNING.value):
        return False
    analytic.status = AnalyticsStatus.QUEUED.value
    await db.commit()
    dispatch.enqueue("compute_statement_analytics", statement_id)
    return True
