import datetime as dt

import pytest

from ledgerly.core.errors import MatchingError, NotFoundError, ValidationError
from ledgerly.services.invoices import InvoiceService, mark_failed, mark_matched

from factories import add_invoice, add_transaction


@pytest.mark.asyncio
async def test_create_with_amount_is_extracted(db, user):
    invoice = await InvoiceService(db).create(
        user.id,
        {
            "vendor_name": "Acme",
            "invoice_number": "INV-7",
            "invoice_date": dt.date(2026, 9, 10),
            "total_amount": 1180,
            "extracted_data": {"line_items": 2, "note": "paid\x00"},
        },
    )
    assert invoice.status == "extracted"
    assert invoice.extraction_method == "manual"
    assert invoice.currency == "INR"
    assert invoice.extracted_data == {"line_items": 2, "note": "paid"}
    assert invoice.can_match


@pytest.mark.asyncio
async def test_create_without_amount_fails(db, user):
    invoice = await InvoiceService(db).create(user.id, {"vendor_name": "Acme"})
    assert invoice.status == "failed"
    assert invoice.extracted_data["error"] == "No amount found in invoice"
    assert "failed_at" in invoice.extracted_data
    assert not invoice.can_match


def test_mark_failed_truncates_long_errors():
    from ledgerly.models.tables import Invoice

    invoice = Invoice(extracted_data={"vendor": "Acme"})
    mark_failed(invoice, "x" * 900)
    assert invoice.status == "failed"
    assert invoice.extracted_data["vendor"] == "Acme"
    assert len(invoice.extracted_data["error"]) <= 500


@pytest.mark.asyncio
async def test_mark_matched_refuses_other_users_transaction(db, user):
    invoice = await add_invoice(db, user.id, 100)
    tx = await add_transaction(db, user.id + 1, "ACME", 100)
    with pytest.raises(MatchingError):
        mark_matched(invoice, tx, confidence=1.0)


@pytest.mark.asyncio
async def test_manual_link_then_unlink(db, user):
    invoice = await add_invoice(db, user.id, 100, status="unmatched")
    tx = await add_transaction(db, user.id, "ACME", 100)
    service = InvoiceService(db)

    linked = await service.link(invoice, tx.id)
    assert linked.status == "matched"
    assert linked.matched_by == "manual"
    assert linked.match_confidence == 1.0
    await db.refresh(tx)
    assert tx.invoice_id == invoice.id

    unlinked = await service.unlink(invoice)
    assert unlinked.status == "extracted"
    assert unlinked.matched_transaction_id is None
    await db.refresh(tx)
    assert tx.invoice_id is None


@pytest.mark.asyncio
async def test_relink_moves_the_match(db, user):
    invoice = await add_invoice(db, user.id, 100)
    first = await add_transaction(db, user.id, "ACME", 100)
    second = await add_transaction(db, user.id, "ACME AGAIN", 100)
    service = InvoiceService(db)

    await service.link(invoice, first.id)
    await service.link(invoice, second.id)
    await db.refresh(first)
    assert first.invoice_id is None
    assert invoice.matched_transaction_id == second.id


@pytest.mark.asyncio
async def test_link_guards(db, user):
    service = InvoiceService(db)
    failed = await add_invoice(db, user.id, None, status="failed")
    tx = await add_transaction(db, user.id, "ACME", 100)
    with pytest.raises(ValidationError):
        await service.link(failed, tx.id)

    invoice = await add_invoice(db, user.id, 100)
    with pytest.raises(NotFoundError):
        await service.link(invoice, 9999)

    taken = await add_invoice(db, user.id, 100)
    await service.link(taken, tx.id)
    with pytest.raises(ValidationError):
        await service.link(invoice, tx.id)

    with pytest.raises(ValidationError):
        await service.unlink(invoice)


@pytest.mark.asyncio
async def test_list_and_delete(db, user):
    service = InvoiceService(db)
    kept = await add_invoice(db, user.id, 100, status="unmatched")
    doomed = await add_invoice(db, user.id, 200)
    tx = await add_transaction(db, user.id, "ACME", 200)
    await service.link(doomed, tx.id)

    assert [i.id for i in await service.list(user.id, status="unmatched")] == [kept.id]
    await service.delete(doomed)
    await db.refresh(tx)
    assert tx.invoice_id is None
    with pytest.raises(NotFoundError):
        await service.get(doomed.id, user.id)
