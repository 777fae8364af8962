"""Dramatiq task definitions for background processing.

Statement parsing, categorisation, embedding generation, invoice
extraction and matching, analytics and workflow execution all run outside
the request cycle. Each actor is a thin synchronous wrapper that runs the
matching ``async`` job function with ``asyncio.run``; the job functions take a
session factory so tests can await them directly.

Every run is tracked in a ``BackgroundJob`` row keyed by the dramatiq
message id, which is what the API hands back to clients as ``job_id``.

To run these tasks start a worker pointed at the worker module:

```bash
dramatiq ledgerly.worker --processes 1 --threads 4
```

The broker URL defaults to ``REDIS_URL``; override it with
``DRAMATIQ_BROKER_URL``. With ``ENVIRONMENT=test`` a ``StubBroker`` is
used so importing this module never needs Redis.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import AgeLimit, CurrentMessage, Retries, ShutdownNotifications, TimeLimit
from dramatiq.results import Results
from dramatiq.results.backends import RedisBackend, StubBackend
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ledgerly.core import dispatch
from ledgerly.core.config import settings
from ledgerly.core.database import db_url
from ledgerly.core.observability import sentry_breadcrumb, sentry_metric_inc
from ledgerly.models.enums import InvoiceStatus
from ledgerly.models.tables import BackgroundJob, Invoice, Statement, Workflow, WorkflowExecution
from ledgerly.services import cache
from ledgerly.services.ml import clients
from ledgerly.utils.helpers import utcnow

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]
JobWork = Callable[[AsyncSession, BackgroundJob], Awaitable[Optional[Dict[str, Any]]]]


def _has_mw(broker, mw_cls) -> bool:
    return any(isinstance(m, mw_cls) for m in broker.middleware)


def build_broker():
    if settings.ENVIRONMENT == "test":
        broker = StubBroker()
        backend = StubBackend()
    else:
        broker = RedisBroker(url=settings.broker_url)
        backend = RedisBackend(url=settings.broker_url)

    if not _has_mw(broker, Results):
        broker.add_middleware(Results(backend=backend))
    if not _has_mw(broker, AgeLimit):
        broker.add_middleware(AgeLimit())
    if not _has_mw(broker, TimeLimit):
        broker.add_middleware(TimeLimit())
    if not _has_mw(broker, ShutdownNotifications):
        broker.add_middleware(ShutdownNotifications())
    if not _has_mw(broker, Retries):
        # Exponential backoff up to ~1m
        broker.add_middleware(Retries(max_retries=3, min_backoff=5000, max_backoff=60000, backoff=2.0))
    if not _has_mw(broker, CurrentMessage):
        broker.add_middleware(CurrentMessage())
    return broker


broker = build_broker()
dramatiq.set_broker(broker)
logger.info("Dramatiq broker configured (%s)", type(broker).__name__)

# Connections must not outlive the event loop created by asyncio.run, so the
# worker never pools them.
worker_engine = create_async_engine(db_url, poolclass=NullPool)
WorkerSession = async_sessionmaker(
    worker_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


def _current_message_id() -> str:
    message = CurrentMessage.get_current_message()
    return message.message_id if message else str(uuid.uuid4())


def _run(coro: Awaitable[Any]) -> Any:
    """Run ``coro`` on a fresh event loop and drop the loop-bound clients."""
    try:
        return asyncio.run(coro)
    finally:
        cache.set_redis(None)
        clients.set_openai_client(None)


async def run_tracked(
    job_type: str,
    payload: Dict[str, Any],
    work: JobWork,
    session_factory: Optional[SessionFactory] = None,
    job_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Run ``work`` inside a session while keeping its ``BackgroundJob`` row current.

    A retried message reuses the row created by the first attempt. Failures
    mark the job failed and re-raise so dramatiq's retry policy applies.
    """
    factory = session_factory or WorkerSession
    job_id = job_id or _current_message_id()
    async with factory() as db:
        job = await db.get(BackgroundJob, job_id)
        if job is None:
            job = BackgroundJob(id=job_id, job_type=job_type, payload=payload, status="pending", progress=0)
            db.add(job)
        job.status = "running"
        job.started_at = utcnow()
        job.error = None
        await db.commit()

        started = time.monotonic()
        try:
            result = await work(db, job)
        except Exception as exc:
            await db.rollback()
            await db.refresh(job)
            job.status = "failed"
            job.error = str(exc)
            job.completed_at = utcnow()
            await db.commit()
            sentry_metric_inc("jobs.finished", tags={"job_type": job_type, "status": "failed"})
            logger.error("Job %s (%s) failed: %s", job_id, job_type, exc)
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        # Handled failures (e.g. an unparseable statement) come back as success=False
        failed = bool(result) and result.get("success") is False
        job.status = "failed" if failed else "completed"
        job.error = result.get("error") if failed else None
        job.progress = 100
        job.result = {**(result or {}), "duration_ms": duration_ms}
        job.completed_at = utcnow()
        await db.commit()
        sentry_metric_inc("jobs.finished", tags={"job_type": job_type, "status": job.status})
        logger.info("Job %s (%s) %s in %sms", job_id, job_type, job.status, duration_ms)
        return result


# ---------------------------------------------------------------------------
# Job bodies
# ---------------------------------------------------------------------------


async def parse_statement_job(statement_id: int, session_factory: Optional[SessionFactory] = None, job_id=None):
    from ledgerly.services.statement_parser import StatementParser

    async def work(db: AsyncSession, job: BackgroundJob):
        statement = await db.get(Statement, statement_id)
        if statement is None:
            raise ValueError(f"Statement {statement_id} not found")
        job.user_id = statement.user_id
        sentry_breadcrumb(category="statements", message="parse.start", data={"statement_id": statement_id})
        return await StatementParser(db, statement).parse()

    return await run_tracked(
        "statement_parse", {"statement_id": statement_id}, work, session_factory, job_id
    )


async def categorize_transactions_job(
    transaction_ids: List[int],
    user_id: Optional[int] = None,
    enable_llm: bool = True,
    session_factory: Optional[SessionFactory] = None,
    job_id=None,
):
    from ledgerly.services.ml.categorization_service import CategorizationService

    async def work(db: AsyncSession, job: BackgroundJob):
        job.user_id = user_id
        outcome = await CategorizationService(db, enable_llm=enable_llm).categorize_ids(transaction_ids, user_id)
        by_method: Dict[str, int] = {}
        for _, result in outcome:
            by_method[result.method] = by_method.get(result.method, 0) + 1
        return {
            "requested": len(transaction_ids),
            "categorized": sum(1 for _, result in outcome if result.matched),
            "by_method": by_method,
        }

    return await run_tracked(
        "categorization",
        {"transaction_ids": list(transaction_ids), "user_id": user_id},
        work,
        session_factory,
        job_id,
    )


async def generate_embeddings_job(
    user_id: Optional[int] = None,
    transaction_ids: Optional[List[int]] = None,
    example_ids: Optional[List[int]] = None,
    session_factory: Optional[SessionFactory] = None,
    job_id=None,
):
    from ledgerly.services.ml.embedding_service import EmbeddingService

    async def work(db: AsyncSession, job: BackgroundJob):
        job.user_id = user_id
        service = EmbeddingService(db)
        examples = await service.generate_for_examples(example_ids or [])
        result: Dict[str, Any] = {"examples_embedded": examples}
        if transaction_ids or not example_ids:
            batch = await service.generate_batch(user_id=user_id, transaction_ids=transaction_ids)
            result.update(
                generated=batch["generated"], failed=batch["failed"], errors=list(batch["errors"])[:20]
            )
        return result

    return await run_tracked(
        "embeddings",
        {"user_id": user_id, "transaction_ids": transaction_ids, "example_ids": example_ids},
        work,
        session_factory,
        job_id,
    )


async def match_invoice_job(invoice_id: int, session_factory: Optional[SessionFactory] = None, job_id=None):
    from ledgerly.services.matching.service import InvoiceMatchingService

    async def work(db: AsyncSession, job: BackgroundJob):
        invoice = await db.get(Invoice, invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        job.user_id = invoice.user_id
        if not invoice.can_match:
            logger.info("Invoice %s is %s, not matching", invoice_id, invoice.status)
            return {"skipped": True, "status": invoice.status}
        outcome = await InvoiceMatchingService(db).match(invoice)
        await db.commit()
        return {
            "matched": outcome["matched"],
            "transaction_id": outcome["transaction_id"],
            "confidence": outcome["confidence"],
            "suggestions": len(outcome["suggestions"]),
        }

    return await run_tracked("invoice_match", {"invoice_id": invoice_id}, work, session_factory, job_id)


async def extract_invoice_job(
    invoice_id: int, auto_match: bool = True, session_factory: Optional[SessionFactory] = None, job_id=None
):
    from ledgerly.services.invoice_extraction import InvoiceExtractionService

    async def work(db: AsyncSession, job: BackgroundJob):
        invoice = await db.get(Invoice, invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice {invoice_id} not found")
        job.user_id = invoice.user_id
        if invoice.status != InvoiceStatus.PENDING.value:
            logger.info("Invoice %s is %s, not extracting", invoice_id, invoice.status)
            return {"skipped": True, "status": invoice.status}
        sentry_breadcrumb(category="invoices", message="extract.start", data={"invoice_id": invoice_id})
        result = await InvoiceExtractionService(db).extract(invoice)
        await db.commit()
        if result["success"] and auto_match and invoice.can_match:
            result["match_job_id"] = dispatch.enqueue("match_invoice", invoice_id)
        return result

    return await run_tracked(
        "invoice_extraction", {"invoice_id": invoice_id, "auto_match": auto_match}, work, session_factory, job_id
    )


async def compute_statement_analytics_job(
    statement_id: int, session_factory: Optional[SessionFactory] = None, job_id=None
):
    from ledgerly.services.analytics import compute_statement_analytics

    async def work(db: AsyncSession, job: BackgroundJob):
        statement = await db.get(Statement, statement_id)
        if statement is not None:
            job.user_id = statement.user_id
        payload = await compute_statement_analytics(db, statement_id)
        return {"computed": payload is not None}

    return await run_tracked(
        "statement_analytics", {"statement_id": statement_id}, work, session_factory, job_id
    )


async def run_workflow_execution_job(
    execution_id: int, session_factory: Optional[SessionFactory] = None, job_id=None
):
    from ledgerly.services.workflows.executor import WorkflowExecutor

    async def work(db: AsyncSession, job: BackgroundJob):
        execution = await db.get(WorkflowExecution, execution_id)
        if execution is None:
            raise ValueError(f"Workflow execution {execution_id} not found")
        workflow = await db.get(Workflow, execution.workflow_id)
        job.user_id = workflow.user_id if workflow else None
        await WorkflowExecutor(db, execution).run()
        return {"execution_id": execution_id, "status": execution.status}

    return await run_tracked(
        "workflow_execution", {"execution_id": execution_id}, work, session_factory, job_id
    )


async def trigger_scheduled_workflows_job(session_factory: Optional[SessionFactory] = None, job_id=None):
    from ledgerly.services.workflows.scheduler import trigger_scheduled_workflows

    async def work(db: AsyncSession, job: BackgroundJob):
        executions = await trigger_scheduled_workflows(db)
        return {"triggered": len(executions), "execution_ids": [e.id for e in executions]}

    return await run_tracked("workflow_schedule", {}, work, session_factory, job_id)


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


@dramatiq.actor(max_retries=0, time_limit=15 * 60 * 1000)
def parse_statement(statement_id: int):
    """Parse an uploaded statement; failures are recorded on the statement."""
    _run(parse_statement_job(statement_id))


@dramatiq.actor(max_retries=3)
def categorize_transactions(transaction_ids: List[int], user_id: Optional[int] = None, enable_llm: bool = True):
    _run(categorize_transactions_job(transaction_ids, user_id, enable_llm))


@dramatiq.actor(max_retries=3)
def generate_embeddings(
    user_id: Optional[int] = None,
    transaction_ids: Optional[List[int]] = None,
    example_ids: Optional[List[int]] = None,
):
    _run(generate_embeddings_job(user_id, transaction_ids, example_ids))


@dramatiq.actor(max_retries=3)
def match_invoice(invoice_id: int):
    _run(match_invoice_job(invoice_id))


@dramatiq.actor(max_retries=3)
def extract_invoice(invoice_id: int, auto_match: bool = True):
    """Extract header fields for a pending invoice, then queue matching."""
    _run(extract_invoice_job(invoice_id, auto_match))


@dramatiq.actor(max_retries=2)
def compute_statement_analytics(statement_id: int):
    _run(compute_statement_analytics_job(statement_id))


@dramatiq.actor(max_retries=0, time_limit=30 * 60 * 1000)
def run_workflow_execution(execution_id: int):
    """Run a workflow execution; ``resume`` re-sends it after a failure."""
    _run(run_workflow_execution_job(execution_id))


@dramatiq.actor(max_retries=0)
def trigger_scheduled_workflows():
    _run(trigger_scheduled_workflows_job())
