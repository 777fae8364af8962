import datetime as dt
from types import SimpleNamespace

import pytest

from ledgerly.core.errors import MatchingError
from ledgerly.services.matching.scoring import (
    normalize_vendor,
    score_amount,
    score_candidate,
    score_date,
    score_vendor,
)
from ledgerly.services.matching.service import InvoiceMatchingService

from factories import add_invoice, add_transaction

INVOICE_DAY = dt.date(2026, 9, 10)


def _invoice(total=1000, day=INVOICE_DAY, vendor="Acme Supplies"):
    return SimpleNamespace(total_amount=total, invoice_date=day, vendor_name=vendor)


def _tx(amount=1000, day=INVOICE_DAY, description="", counterparty=None):
    return SimpleNamespace(
        amount=amount,
        transaction_date=day,
        description=description,
        counterparty_name=counterparty,
        original_description=None,
    )


@pytest.mark.parametrize(
    "amount, expected",
    [(1000, 50), (1000.004, 50), (1009, 35), (1040, 20), (960, 20), (1060, 0)],
)
def test_score_amount(amount, expected):
    assert score_amount(_invoice(), _tx(amount=amount)) == expected


def test_score_amount_without_total():
    assert score_amount(_invoice(total=None), _tx()) == 0


@pytest.mark.parametrize("offset, expected", [(0, 25), (-1, 20), (3, 15), (-7, 5), (8, 0)])
def test_score_date(offset, expected):
    assert score_date(_invoice(), _tx(day=INVOICE_DAY + dt.timedelta(days=offset))) == expected


def test_score_date_missing_invoice_date():
    assert score_date(_invoice(day=None), _tx()) == 0


def test_score_vendor():
    assert normalize_vendor("Acme-Supplies Pvt. Ltd!") == "acme supplies pvt ltd"
    assert score_vendor(_invoice(), _tx(description="NEFT ACME SUPPLIES")) == 25
    assert score_vendor(_invoice(), _tx(description="POS", counterparty="acme_supplies")) == 25
    assert score_vendor(_invoice(), _tx(description="NEFT ACME")) == 15
    assert score_vendor(_invoice(), _tx(description="AMAZON")) == 0
    assert score_vendor(_invoice(vendor=None), _tx(description="ACME")) == 0


def test_score_candidate_caps_and_breaks_down():
    total, breakdown = score_candidate(_invoice(), _tx(description="ACME SUPPLIES"))
    assert total == 100
    assert breakdown == {"amount": 50, "date": 25, "vendor": 25}


@pytest.mark.asyncio
async def test_exact_candidate_is_auto_matched(db, user):
    tx = await add_transaction(db, user.id, "UPI SWIGGY ORDER", 1180, day=INVOICE_DAY)
    invoice = await add_invoice(db, user.id, 1180, invoice_date=INVOICE_DAY, vendor_name="Swiggy")

    result = await InvoiceMatchingService(db).match(invoice)
    await db.commit()

    assert result["matched"] is True
    assert result["transaction_id"] == tx.id
    assert result["confidence"] == 100
    assert invoice.status == "matched"
    assert invoice.matched_by == "auto"
    assert invoice.match_confidence == 1.0
    assert tx.invoice_id == invoice.id


@pytest.mark.asyncio
async def test_weak_candidate_becomes_suggestion(db, user):
    tx = await add_transaction(db, user.id, "NEFT ACME", 1008, day=dt.date(2026, 9, 12))
    invoice = await add_invoice(db, user.id, 1000, invoice_date=INVOICE_DAY, vendor_name="Acme Supplies")

    result = await InvoiceMatchingService(db).match(invoice)

    assert result["matched"] is False
    assert invoice.status == "extracted"
    [suggestion] = result["suggestions"]
    assert suggestion["transaction_id"] == tx.id
    assert suggestion["score"] == 65
    assert suggestion["breakdown"] == {"amount": 35, "date": 15, "vendor": 15}
    assert "transaction" not in suggestion


@pytest.mark.asyncio
async def test_candidates_skip_credits_linked_and_foreign_rows(db, user):
    other = await add_invoice(db, user.id, 500, invoice_date=INVOICE_DAY, status="matched")
    await add_transaction(db, user.id, "ACME", 1000, day=INVOICE_DAY, invoice_id=other.id)
    await add_transaction(db, user.id, "ACME", 1000, transaction_type="credit", day=INVOICE_DAY)
    await add_transaction(db, user.id + 1, "ACME", 1000, day=INVOICE_DAY)
    await add_transaction(db, user.id, "ACME", 1000, day=dt.date(2026, 8, 1))
    invoice = await add_invoice(db, user.id, 1000, invoice_date=INVOICE_DAY, vendor_name="Acme")

    assert await InvoiceMatchingService(db).candidates(invoice) == []
    result = await InvoiceMatchingService(db).match(invoice)
    assert result == {
        "invoice_id": invoice.id,
        "matched": False,
        "transaction_id": None,
        "confidence": None,
        "suggestions": [],
    }
    assert invoice.status == "unmatched"


@pytest.mark.asyncio
async def test_undated_invoice_looks_back_thirty_days(db, user):
    recent = await add_transaction(db, user.id, "ACME", 1000, day=dt.date(2026, 9, 20))
    await add_transaction(db, user.id, "ACME", 1000, day=dt.date(2026, 8, 1))
    invoice = await add_invoice(db, user.id, 1000, vendor_name="Acme")

    service = InvoiceMatchingService(db, today=dt.date(2026, 9, 30))
    assert [t.id for t in await service.candidates(invoice)] == [recent.id]


@pytest.mark.asyncio
async def test_find_suggestions_leaves_status_alone(db, user):
    await add_transaction(db, user.id, "NEFT ACME", 1008, day=dt.date(2026, 9, 12))
    invoice = await add_invoice(db, user.id, 1000, invoice_date=INVOICE_DAY, vendor_name="Acme Supplies")

    suggestions = await InvoiceMatchingService(db).find_suggestions(invoice)
    assert len(suggestions) == 1
    assert invoice.status == "extracted"


@pytest.mark.asyncio
async def test_only_extracted_invoices_can_be_matched(db, user):
    pending = await add_invoice(db, user.id, 1000, status="pending")
    with pytest.raises(MatchingError) as excinfo:
        await InvoiceMatchingService(db).match(pending)
    assert excinfo.value.message == "Invoice not in extracted state"

    no_amount = await add_invoice(db, user.id, None, status="extracted")
    with pytest.raises(MatchingError) as excinfo:
        await InvoiceMatchingService(db).match(no_amount)
    assert excinfo.value.message == "No amount found in invoice"


@pytest.mark.asyncio
async def test_invoice_with_suggestions_matches_on_a_later_run(db, user):
    await add_transaction(db, user.id, "POS 4412 STORE", 1000, day=dt.date(2026, 9, 15))
    invoice = await add_invoice(db, user.id, 1000, invoice_date=INVOICE_DAY, vendor_name="Zeta Traders")
    service = InvoiceMatchingService(db)

    first = await service.match(invoice)
    await db.commit()
    assert first["matched"] is False
    assert [s["score"] for s in first["suggestions"]] == [55]
    assert invoice.status == "extracted"

    exact = await add_transaction(db, user.id, "NEFT ZETA TRADERS", 1000, day=INVOICE_DAY)
    second = await service.match(invoice)
    await db.commit()

    assert second["matched"] is True
    assert second["transaction_id"] == exact.id
    assert invoice.status == "matched"
