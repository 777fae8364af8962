"""Invoice registration and status transitions.

Status flow::

    pending -> processing -> extracted -> matched
                                 |    \\-> unmatched -> matched (manual)
                                 \\-> failed

``mark_matched`` links both sides (``invoice.matched_transaction_id`` and
``transaction.invoice_id``) and refuses transactions of another user.
Functions here change state only; callers commit.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.errors import MatchingError, NotFoundError, ValidationError
from ledgerly.models.enums import InvoiceStatus
from ledgerly.models.tables import Invoice, Transaction
from ledgerly.utils.helpers import truncate, utcnow, utcnow_iso
from ledgerly.utils.sanitization import deep_sanitize

logger = logging.getLogger(__name__)

ERROR_MAX_LENGTH = 500
# Raw document text awaiting extraction lives under this key of extracted_data.
SOURCE_TEXT_KEY = "source_text"
LINKABLE_STATUSES = {InvoiceStatus.EXTRACTED.value, InvoiceStatus.UNMATCHED.value}


def mark_processing(invoice: Invoice) -> None:
    invoice.status = InvoiceStatus.PROCESSING.value


def mark_extracted(invoice: Invoice, data: Dict[str, Any]) -> None:
    invoice.status = InvoiceStatus.EXTRACTED.value
    invoice.vendor_name = data.get("vendor_name")
    invoice.vendor_gstin = data.get("vendor_gstin")
    invoice.invoice_number = data.get("invoice_number")
    invoice.invoice_date = data.get("invoice_date")
    invoice.total_amount = data.get("total_amount")
    invoice.currency = data.get("currency") or "INR"
    invoice.extracted_data = deep_sanitize(data.get("raw_data") or {})
    invoice.extraction_method = data.get("method")
    invoice.extraction_confidence = data.get("confidence")


def mark_matched(invoice: Invoice, transaction: Transaction, confidence: float, method: str = "auto") -> None:
    if transaction.user_id != invoice.user_id:
        raise MatchingError("Transaction user mismatch")
    invoice.status = InvoiceStatus.MATCHED.value
    invoice.matched_transaction_id = transaction.id
    invoice.match_confidence = confidence
    invoice.matched_at = utcnow()
    invoice.matched_by = method
    transaction.invoice_id = invoice.id


def mark_unmatched(invoice: Invoice) -> None:
    invoice.status = InvoiceStatus.UNMATCHED.value


def mark_failed(invoice: Invoice, error_message: Optional[str] = None) -> None:
    invoice.extracted_data = {
        **(invoice.extracted_data or {}),
        "error": truncate(error_message, ERROR_MAX_LENGTH),
        "failed_at": utcnow_iso(),
    }
    invoice.status = InvoiceStatus.FAILED.value


async def unlink_transaction(db: AsyncSession, invoice: Invoice) -> Optional[int]:
    """Undo a match; returns the id of the transaction that was unlinked."""
    if invoice.matched_transaction_id is None:
        return None
    transaction = await db.get(Transaction, invoice.matched_transaction_id)
    if transaction is not None and transaction.invoice_id == invoice.id:
        transaction.invoice_id = None
    unlinked = invoice.matched_transaction_id
    invoice.status = InvoiceStatus.EXTRACTED.value
    invoice.matched_transaction_id = None
    invoice.match_confidence = None
    invoice.matched_at = None
    invoice.matched_by = None
    return unlinked


class InvoiceService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, user_id: int, data: Dict[str, Any], workspace_id: Optional[int] = None) -> Invoice:
        """Register an invoice.

        With header fields it is ``extracted`` straight away; with only the
        document ``text`` it stays ``pending`` until the extraction job runs.
        """
        invoice = Invoice(
            user_id=user_id,
            workspace_id=workspace_id,
            account_id=data.get("account_id"),
            source=data.get("source") or "upload",
            file_name=data.get("file_name"),
            status=InvoiceStatus.PENDING.value,
            extracted_data={},
        )
        self.db.add(invoice)
        if data.get("total_amount"):
            mark_extracted(
                invoice,
                {
                    **data,
                    "raw_data": data.get("extracted_data") or {},
                    "method": data.get("extraction_method") or "manual",
                },
            )
        elif data.get("text"):
            invoice.extracted_data = {SOURCE_TEXT_KEY: data["text"]}
        else:
            mark_failed(invoice, "No amount found in invoice")
        await self.db.commit()
        await self.db.refresh(invoice)
        return invoice

    async def get(self, invoice_id: int, user_id: int) -> Invoice:
        invoice = (
            await self.db.execute(select(Invoice).where(Invoice.id == invoice_id, Invoice.user_id == user_id))
        ).scalar_one_or_none()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    async def list(self, user_id: int, status: Optional[str] = None) -> List[Invoice]:
        query = select(Invoice).where(Invoice.user_id == user_id)
        if status:
            query = query.where(Invoice.status == status)
        return list((await self.db.execute(query.order_by(Invoice.created_at.desc()))).scalars().all())

    async def delete(self, invoice: Invoice) -> None:
        await unlink_transaction(self.db, invoice)
        await self.db.delete(invoice)
        await self.db.commit()

    async def link(self, invoice: Invoice, transaction_id: int) -> Invoice:
        """Manually link ``invoice`` to one of the user's transactions."""
        if invoice.status not in LINKABLE_STATUSES and invoice.status != InvoiceStatus.MATCHED.value:
            raise ValidationError(f"Invoice in status {invoice.status} cannot be linked")
        transaction = await self.db.get(Transaction, transaction_id)
        if transaction is None or transaction.user_id != invoice.user_id:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if transaction.invoice_id is not None and transaction.invoice_id != invoice.id:
            raise ValidationError("Transaction is already linked to another invoice")
        if invoice.matched_transaction_id and invoice.matched_transaction_id != transaction.id:
            await unlink_transaction(self.db, invoice)
        mark_matched(invoice, transaction, confidence=1.0, method="manual")
        await self.db.commit()
        await self.db.refresh(invoice)
        logger.info("Invoice %s manually linked to transaction %s", invoice.id, transaction.id)
        return invoice

    async def unlink(self, invoice: Invoice) -> Invoice:
        if invoice.matched_transaction_id is None:
            raise ValidationError("Invoice is not linked to a transaction")
        await unlink_transaction(self.db, invoice)
        await self.db.commit()
        await self.db.refresh(invoice)
        return invoice
