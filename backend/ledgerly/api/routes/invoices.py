"""API routes for invoices and invoice to transaction matching."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.api.dependencies import get_current_user, get_db_session, get_workspace_id
from ledgerly.core import dispatch
from ledgerly.models.enums import InvoiceStatus
from ledgerly.models.schemas import (
    InvoiceCreate,
    InvoiceLinkRequest,
    InvoiceRead,
    MatchCandidate,
    MatchResultRead,
)
from ledgerly.models.tables import Invoice, User
from ledgerly.services.invoices import InvoiceService
from ledgerly.services.matching.service import InvoiceMatchingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _read(invoice: Invoice) -> InvoiceRead:
    return InvoiceRead.model_validate(invoice, from_attributes=True)


@router.get("", response_model=List[InvoiceRead])
async def list_invoices(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[InvoiceRead]:
    return [_read(i) for i in await InvoiceService(db).list(user.id, status_filter)]


@router.post("", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    payload: InvoiceCreate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    workspace_id: Optional[int] = Depends(get_workspace_id),
) -> InvoiceRead:
    """Register an invoice.

    Extracted invoices are queued for auto-matching; invoices sent as raw
    ``text`` are queued for extraction, which queues matching itself.
    """
    data = payload.model_dump(exclude={"auto_match"})
    invoice = await InvoiceService(db).create(user.id, data, workspace_id)
    read = _read(invoice)
    if invoice.status == InvoiceStatus.PENDING.value:
        read.job_id = dispatch.enqueue("extract_invoice", invoice.id, payload.auto_match)
        logger.info("Invoice %s queued for extraction (job %s)", invoice.id, read.job_id)
        return read
    if payload.auto_match and invoice.status == InvoiceStatus.EXTRACTED.value:
        read.job_id = dispatch.enqueue("match_invoice", invoice.id)
        logger.info("Invoice %s queued for matching (job %s)", invoice.id, read.job_id)
    return read


@router.get("/{invoice_id}", response_model=InvoiceRead)
async def get_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> InvoiceRead:
    return _read(await InvoiceService(db).get(invoice_id, user.id))


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
):
    service = InvoiceService(db)
    await service.delete(await service.get(invoice_id, user.id))


@router.post("/{invoice_id}/match", response_model=MatchResultRead)
async def match_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> MatchResultRead:
    """Run matching now instead of waiting for the worker."""
    invoice = await InvoiceService(db).get(invoice_id, user.id)
    outcome = await InvoiceMatchingService(db).match(invoice)
    await db.commit()
    return MatchResultRead(**outcome)


@router.get("/{invoice_id}/suggestions", response_model=List[MatchCandidate])
async def invoice_suggestions(
    invoice_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[MatchCandidate]:
    invoice = await InvoiceService(db).get(invoice_id, user.id)
    return [MatchCandidate(**c) for c in await InvoiceMatchingService(db).find_suggestions(invoice)]


@router.post("/{invoice_id}/link", response_model=InvoiceRead)
async def link_invoice(
    invoice_id: int,
    payload: InvoiceLinkRequest,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> InvoiceRead:
    service = InvoiceService(db)
    invoice = await service.get(invoice_id, user.id)
    return _read(await service.link(invoice, payload.transaction_id))


@router.post("/{invoice_id}/unlink", response_model=InvoiceRead)
async def unlink_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> InvoiceRead:
    service = InvoiceService(db)
    return _read(await service.unlink(await service.get(invoice_id, user.id)))
