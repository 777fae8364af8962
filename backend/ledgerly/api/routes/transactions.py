"""API routes for transactions: listing, edits, stats, categorisation and feedback."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.api.dependencies import get_current_user, get_db_session, get_workspace_id
from ledgerly.core import dispatch
from ledgerly.models.enums import TransactionType
from ledgerly.models.schemas import (
    CategorizationResultRead,
    CategorizeRequest,
    FeedbackRequest,
    FeedbackResponse,
    InvoiceRead,
    JobQueued,
    TransactionCreate,
    TransactionRead,
    TransactionStats,
    TransactionUpdate,
)
from ledgerly.models.tables import User
from ledgerly.services.invoices import InvoiceService
from ledgerly.services.ml.categorization_service import CategorizationService
from ledgerly.services.ml.feedback_service import FeedbackService
from ledgerly.services.stats_service import TransactionStatsService
from ledgerly.services.transactions import TransactionFilters, TransactionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


def transaction_filters(
    statement_id: Optional[int] = None,
    account_id: Optional[int] = None,
    category_id: Optional[int] = None,
    transaction_type: Optional[TransactionType] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    search: Optional[str] = Query(None, max_length=100),
    uncategorized: Optional[bool] = None,
) -> TransactionFilters:
    return TransactionFilters(
        statement_id=statement_id,
        account_id=account_id,
        category_id=category_id,
        transaction_type=transaction_type.value if transaction_type else None,
        start_date=start_date,
        end_date=end_date,
        search=search,
        uncategorized=uncategorized,
    )


def _read(transaction) -> TransactionRead:
    return TransactionRead.model_validate(transaction, from_attributes=True)


@router.get("", response_model=List[TransactionRead])
async def list_transactions(
    filters: TransactionFilters = Depends(transaction_filters),
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[TransactionRead]:
    return [_read(t) for t in await TransactionService(db).list(user.id, filters)]


@router.post("", response_model=TransactionRead, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionCreate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    workspace_id: Optional[int] = Depends(get_workspace_id),
) -> TransactionRead:
    """Record a manual transaction (cash spend, missing statement row)."""
    transaction = await TransactionService(db).create(user.id, payload.model_dump(), workspace_id)
    return _read(transaction)


@router.get("/stats", response_model=TransactionStats)
async def transaction_stats(
    detailed: bool = False,
    filters: TransactionFilters = Depends(transaction_filters),
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> TransactionStats:
    stats = await TransactionStatsService(db, user.id, filters).compute(detailed=detailed)
    return TransactionStats(**stats)


@router.get("/analytics")
async def transaction_analytics(
    filters: TransactionFilters = Depends(transaction_filters),
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    """Detailed spending analytics; may return ``analytics_loading`` while computing."""
    return await TransactionStatsService(db, user.id, filters).detailed()


@router.post("/categorize", response_model=Union[JobQueued, List[CategorizationResultRead]])
async def categorize_transactions(
    payload: CategorizeRequest,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
):
    """Categorise the given transactions now, or queue it with ``run_async``."""
    if payload.run_async:
        job_id = dispatch.enqueue(
            "categorize_transactions", list(payload.transaction_ids), user.id, payload.enable_llm
        )
        return JobQueued(job_id=job_id)
    service = CategorizationService(db, enable_llm=payload.enable_llm)
    outcome = await service.categorize_ids(payload.transaction_ids, user.id)
    return [CategorizationResultRead(**result.to_dict(tx.id)) for tx, result in outcome]


@router.get("/{transaction_id}", response_model=TransactionRead)
async def get_transaction(
    transaction_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> TransactionRead:
    return _read(await TransactionService(db).get(transaction_id, user.id))


@router.patch("/{transaction_id}", response_model=TransactionRead)
async def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> TransactionRead:
    service = TransactionService(db)
    transaction = await service.get(transaction_id, user.id)
    changes = payload.model_dump(mode="json", exclude_unset=True)
    return _read(await service.update(transaction, changes))


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(
    transaction_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
):
    service = TransactionService(db)
    await service.delete(await service.get(transaction_id, user.id))


@router.post("/{transaction_id}/categorize", response_model=CategorizationResultRead)
async def categorize_transaction(
    transaction_id: int,
    enable_llm: bool = True,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> CategorizationResultRead:
    transaction = await TransactionService(db).get(transaction_id, user.id)
    result = await CategorizationService(db, enable_llm=enable_llm).categorize(transaction)
    return CategorizationResultRead(**result.to_dict(transaction.id))


@router.post("/{transaction_id}/feedback", response_model=FeedbackResponse)
async def transaction_feedback(
    transaction_id: int,
    payload: FeedbackRequest,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> FeedbackResponse:
    """Correct a category; the correction trains rules, examples and global patterns."""
    transaction = await TransactionService(db).get(transaction_id, user.id)
    service = FeedbackService(db)
    outcome = await service.process_correction(transaction, payload.category_id, payload.subcategory_id)
    similar_updated = 0
    if payload.apply_to_similar:
        similar = await service.apply_to_similar(transaction, payload.category_id, payload.subcategory_id)
        similar_updated = similar["updated"]
    await db.refresh(transaction)
    return FeedbackResponse(
        transaction=_read(transaction),
        rule_id=outcome["rule"].id if outcome["rule"] is not None else None,
        labeled_example_id=outcome["example"].id if outcome["example"] is not None else None,
        similar_updated=similar_updated,
    )


@router.post("/{transaction_id}/invoice/{invoice_id}", response_model=InvoiceRead)
async def link_invoice(
    transaction_id: int,
    invoice_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> InvoiceRead:
    """Attach an invoice to this transaction (manual match)."""
    transaction = await TransactionService(db).get(transaction_id, user.id)
    service = InvoiceService(db)
    invoice = await service.link(await service.get(invoice_id, user.id), transaction.id)
    return InvoiceRead.model_validate(invoice, from_attributes=True)


@router.delete("/{transaction_id}/invoice", response_model=TransactionRead)
async def unlink_invoice(
    transaction_id: int,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> TransactionRead:
    service = TransactionService(db)
    transaction = await service.get(transaction_id, user.id)
    if transaction.invoice_id is not None:
        invoices = InvoiceService(db)
        await invoices.unlink(await invoices.get(transaction.invoice_id, user.id))
        await db.refresh(transaction)
    return _read(transaction)
