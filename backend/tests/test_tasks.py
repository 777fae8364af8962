import datetime as dt

import pytest
from sqlalchemy import select

from ledgerly.core import tasks
from ledgerly.core.dispatch import enqueue as send_to_actor
from ledgerly.models.tables import BackgroundJob, BankTemplate, Invoice, Statement, Transaction
from ledgerly.services.ml import clients
from ledgerly.services.statements import StatementService
from ledgerly.services.workflows.engine import WorkflowEngine
from ledgerly.services.workflows.service import WorkflowService

from factories import HDFC_CSV, INVOICE_TEXT, DummyOpenAI, add_invoice, add_transaction


async def _job(session_factory, job_id):
    async with session_factory() as session:
        return await session.get(BackgroundJob, job_id)


@pytest.mark.asyncio
async def test_run_tracked_records_success(session_factory):
    async def work(db, job):
        job.user_id = None
        return {"answer": 42}

    result = await tasks.run_tracked("demo", {"n": 1}, work, session_factory, job_id="msg-1")
    assert result == {"answer": 42}

    job = await _job(session_factory, "msg-1")
    assert job.status == "completed"
    assert job.progress == 100
    assert job.payload == {"n": 1}
    assert job.result["answer"] == 42
    assert "duration_ms" in job.result
    assert job.started_at is not None and job.completed_at is not None


@pytest.mark.asyncio
async def test_run_tracked_handled_failure(session_factory):
    async def work(db, job):
        return {"success": False, "error": "No transactions found in statement"}

    await tasks.run_tracked("demo", {}, work, session_factory, job_id="msg-2")
    job = await _job(session_factory, "msg-2")
    assert job.status == "failed"
    assert job.error == "No transactions found in statement"


@pytest.mark.asyncio
async def test_run_tracked_exception_is_recorded_and_raised(session_factory):
    attempts = []

    async def work(db, job):
        attempts.append(job.id)
        raise RuntimeError("redis went away")

    with pytest.raises(RuntimeError):
        await tasks.run_tracked("demo", {}, work, session_factory, job_id="msg-3")
    job = await _job(session_factory, "msg-3")
    assert job.status == "failed"
    assert job.error == "redis went away"

    async def retry(db, job):
        attempts.append(job.id)
        return {}

    await tasks.run_tracked("demo", {}, retry, session_factory, job_id="msg-3")
    job = await _job(session_factory, "msg-3")
    assert job.status == "completed"
    assert job.error is None
    assert attempts == ["msg-3", "msg-3"]


@pytest.mark.asyncio
async def test_parse_statement_job(session_factory, db, user, enqueued):
    query = select(BankTemplate).where(
        BankTemplate.bank_code == "hdfc", BankTemplate.account_type == "savings", BankTemplate.file_format == "csv"
    )
    template = (await db.execute(query)).scalar_one()
    statement = await StatementService(db).create(user.id, "sep.csv", "csv", HDFC_CSV, bank_template_id=template.id)

    result = await tasks.parse_statement_job(statement.id, session_factory, job_id="parse-1")
    assert result == {"success": True, "transaction_count": 2}
    job = await _job(session_factory, "parse-1")
    assert job.job_type == "statement_parse"
    assert job.user_id == user.id
    assert "categorize_transactions" in enqueued.names()


@pytest.mark.asyncio
async def test_parse_statement_job_missing_statement(session_factory):
    with pytest.raises(ValueError):
        await tasks.parse_statement_job(404, session_factory, job_id="parse-2")
    job = await _job(session_factory, "parse-2")
    assert job.status == "failed"
    assert job.error == "Statement 404 not found"


@pytest.mark.asyncio
async def test_categorize_transactions_job(session_factory, db, user):
    known = await add_transaction(db, user.id, "SWIGGY BANGALORE", 300)
    unknown = await add_transaction(db, user.id, "QWERTY ZXCV", 10)

    result = await tasks.categorize_transactions_job(
        [known.id, unknown.id], user.id, enable_llm=False, session_factory=session_factory, job_id="cat-1"
    )
    assert result["requested"] == 2
    assert result["categorized"] == 1
    assert sum(result["by_method"].values()) == 2

    async with session_factory() as session:
        row = await session.get(Transaction, known.id)
        assert row.category_id is not None
        assert row.categorization_status == "completed"


@pytest.mark.asyncio
async def test_match_invoice_job(session_factory, db, user):
    tx = await add_transaction(db, user.id, "UPI SWIGGY ORDER", 1180, day=dt.date(2026, 9, 10))
    invoice = await add_invoice(db, user.id, 1180, invoice_date=dt.date(2026, 9, 10), vendor_name="Swiggy")

    result = await tasks.match_invoice_job(invoice.id, session_factory, job_id="match-1")
    assert result == {"matched": True, "transaction_id": tx.id, "confidence": 100, "suggestions": 0}
    assert (await _job(session_factory, "match-1")).user_id == user.id


@pytest.mark.asyncio
async def test_match_invoice_job_skips_unmatchable(session_factory, db, user):
    invoice = await add_invoice(db, user.id, None, status="failed")
    result = await tasks.match_invoice_job(invoice.id, session_factory, job_id="match-2")
    assert result == {"skipped": True, "status": "failed"}


@pytest.mark.asyncio
async def test_extract_invoice_job_queues_matching(session_factory, db, user, enqueued):
    invoice = await add_invoice(db, user.id, None, status="pending")
    invoice.extracted_data = {"source_text": INVOICE_TEXT}
    await db.commit()

    result = await tasks.extract_invoice_job(invoice.id, session_factory=session_factory, job_id="extract-1")

    assert result["success"] is True
    assert result["match_job_id"] == "job-1"
    assert enqueued.calls == [("match_invoice", (invoice.id,))]
    job = await _job(session_factory, "extract-1")
    assert (job.status, job.user_id) == ("completed", user.id)
    async with session_factory() as session:
        row = await session.get(Invoice, invoice.id)
        assert row.status == "extracted"
        assert row.invoice_number == "IN-BLR-2026-0042"


@pytest.mark.asyncio
async def test_extract_invoice_job_without_auto_match(session_factory, db, user, enqueued):
    clients.set_openai_client(DummyOpenAI())
    invoice = await add_invoice(db, user.id, None, status="pending")
    invoice.extracted_data = {"source_text": "nothing useful here"}
    await db.commit()

    result = await tasks.extract_invoice_job(invoice.id, False, session_factory, job_id="extract-2")

    assert result == {"success": False, "error": "No amount found in invoice"}
    assert enqueued.calls == []
    assert (await _job(session_factory, "extract-2")).status == "failed"

    skipped = await tasks.extract_invoice_job(invoice.id, session_factory=session_factory, job_id="extract-3")
    assert skipped == {"skipped": True, "status": "failed"}


@pytest.mark.asyncio
async def test_compute_statement_analytics_job(session_factory, db, user):
    pending = Statement(user_id=user.id, file_name="a.csv", file_type="csv", status="pending", meta={})
    db.add(pending)
    await db.commit()
    result = await tasks.compute_statement_analytics_job(pending.id, session_factory, job_id="an-1")
    assert result == {"computed": False}


@pytest.mark.asyncio
async def test_run_workflow_execution_job(session_factory, db, user):
    service = WorkflowService(db)
    workflow = await service.create(
        user.id,
        {"name": "Ping", "steps": [{"step_type": "notify", "position": 1, "config": {"title": "Hi", "message": "x"}}]},
    )
    await service.activate(workflow)
    workflow = await service.get(workflow.id, user.id)
    execution = await WorkflowEngine(db, workflow).execute()

    result = await tasks.run_workflow_execution_job(execution.id, session_factory, job_id="wf-1")
    assert result == {"execution_id": execution.id, "status": "completed"}
    assert (await _job(session_factory, "wf-1")).user_id == user.id


@pytest.mark.asyncio
async def test_trigger_scheduled_workflows_job_without_workflows(session_factory):
    result = await tasks.trigger_scheduled_workflows_job(session_factory, job_id="sched-1")
    assert result == {"triggered": 0, "execution_ids": []}


def test_enqueue_sends_to_the_named_actor():
    message_id = send_to_actor("match_invoice", 7)
    try:
        assert message_id
        queue = tasks.broker.queues[tasks.match_invoice.queue_name]
        assert queue.qsize() == 1
    finally:
        tasks.broker.flush_all()


def test_stub_broker_in_tests():
    assert type(tasks.broker).__name__ == "StubBroker"
    assert tasks.parse_statement.options["max_retries"] == 0
