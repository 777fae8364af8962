import json

import pytest
from sqlalchemy import select

from ledgerly.core.errors import ValidationError
from ledgerly.models.tables import BankTemplate, StatementAnalytic, Transaction
from ledgerly.services.statement_parser import StatementParser, queue_analytics
from ledgerly.services.statements import StatementService

from factories import HDFC_CSV


async def _template(db, bank_code, account_type="savings", file_format="csv"):
    return (
        await db.execute(
            select(BankTemplate).where(
                BankTemplate.bank_code == bank_code,
                BankTemplate.account_type == account_type,
                BankTemplate.file_format == file_format,
            )
        )
    ).scalar_one()


@pytest.mark.asyncio
async def test_parse_hdfc_statement_creates_transactions_and_queues_followups(db, user, account, published, enqueued):
    template = await _template(db, "hdfc")
    statement = await StatementService(db).create(
        user.id, "sep.csv", "csv", HDFC_CSV, bank_template_id=template.id, account_id=account.id
    )

    outcome = await StatementParser(db, statement).parse()
    assert outcome == {"success": True, "transaction_count": 2}

    await db.refresh(statement)
    assert statement.status == "parsed"
    assert statement.parsed_at is not None
    assert statement.parsing_progress["status"] == "completed"
    assert statement.parsing_progress["percentage"] == 100

    txs = (await db.execute(select(Transaction).order_by(Transaction.transaction_date))).scalars().unique().all()
    assert [t.transaction_type for t in txs] == ["debit", "credit"]
    assert all(t.account_id == account.id and t.statement_id == statement.id for t in txs)

    events = [json.loads(payload)["type"] for channel, payload in published.messages if channel == f"statements:user:{user.id}"]
    assert events == ["statement.processing", "statement.parsed"]
    assert enqueued.names() == ["categorize_transactions", "compute_statement_analytics"]
    assert sorted(enqueued.calls[0][1][0]) == sorted(t.id for t in txs)
    analytic = (await db.execute(select(StatementAnalytic))).scalar_one()
    assert analytic.status == "queued"


@pytest.mark.asyncio
async def test_unsupported_file_fails_statement(db, user, published, enqueued):
    statement = await StatementService(db).create(user.id, "sep.pdf", "pdf", b"%PDF-1.4")

    outcome = await StatementParser(db, statement).parse()
    assert outcome["success"] is False
    assert "PDF statements are not supported" in outcome["error"]

    await db.refresh(statement)
    assert statement.status == "failed"
    assert statement.error_message == outcome["error"]
    assert statement.parsing_progress["status"] == "failed"
    assert json.loads(published.messages[-1][1])["type"] == "statement.failed"
    assert enqueued.calls == []


@pytest.mark.asyncio
async def test_header_only_file_has_no_transactions(db, user):
    statement = await StatementService(db).create(user.id, "empty.csv", "csv", b"Date,Description,Debit,Credit\n")
    outcome = await StatementParser(db, statement).parse()
    assert outcome == {"success": False, "error": "No transactions found in statement"}


@pytest.mark.asyncio
async def test_create_validates_template_and_account(db, user):
    service = StatementService(db)
    with pytest.raises(ValidationError):
        await service.create(user.id, "a.csv", "csv", b"x", bank_template_id=9999)
    with pytest.raises(ValidationError):
        await service.create(user.id, "a.csv", "csv", b"x", account_id=9999)


@pytest.mark.asyncio
async def test_queue_parse_and_reparse(db, user, enqueued):
    service = StatementService(db)
    statement = await service.create(user.id, "sep.csv", "csv", HDFC_CSV)
    assert await service.queue_parse(statement) == "job-1"
    assert enqueued.calls == [("parse_statement", (statement.id,))]

    statement.status = "processing"
    with pytest.raises(ValidationError):
        await service.queue_parse(statement)

    statement.status = "parsed"
    statement.meta = {"parsing_progress": {"status": "completed"}, "source": "upload"}
    await db.commit()
    await service.reset_for_reparse(statement)
    assert statement.status == "pending"
    assert statement.meta == {"source": "upload"}


@pytest.mark.asyncio
async def test_credit_card_summary_reports_outstanding(db, user):
    template = await _template(db, "hdfc", account_type="credit_card")
    content = (
        b"Date,Transaction Description,Amount,Debit / Credit\n"
        b"01/09/2026,AMAZON,1299.00,Dr\n"
        b"02/09/2026,SWIGGY,701.00,Dr\n"
        b"03/09/2026,PAYMENT RECEIVED,500.00,Cr\n"
    )
    service = StatementService(db)
    statement = await service.create(user.id, "card.csv", "csv", content, bank_template_id=template.id)
    await StatementParser(db, statement).parse()

    summary = await service.summary(statement)
    assert summary["transaction_count"] == 3
    assert summary["total_debits"] == 2000.0
    assert summary["total_credits"] == 500.0
    assert summary["is_credit_card"] is True
    assert summary["outstanding_balance"] == 1500.0


@pytest.mark.asyncio
async def test_queue_analytics_is_idempotent_while_queued(db, user, enqueued):
    statement = await StatementService(db).create(user.id, "sep.csv", "csv", HDFC_CSV)
    assert await queue_analytics(db, statement.id) is True
    assert await queue_analytics(db, statement.id) is False
    assert enqueued.names() == ["compute_statement_analytics"]
