"""Match an extracted invoice against the owner's bank transactions."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.errors import MatchingError
from ledgerly.core.observability import sentry_metric_inc
from ledgerly.models.enums import TransactionType
from ledgerly.models.tables import Invoice, Transaction
from ledgerly.services.invoices import mark_matched, mark_unmatched
from ledgerly.services.matching.scoring import SCORERS, score_candidate

logger = logging.getLogger(__name__)

AUTO_MATCH_THRESHOLD = 80
SUGGESTION_THRESHOLD = 40
MAX_SUGGESTIONS = 5
MAX_CANDIDATES = 50
DATE_WINDOW_DAYS = 7
NO_DATE_LOOKBACK_DAYS = 30
AMOUNT_TOLERANCE_RATE = 0.05
AMOUNT_TOLERANCE_FLOOR = 10


class InvoiceMatchingService:
    def __init__(
        self,
        db: AsyncSession,
        scorers: Optional[Dict[str, Callable[..., int]]] = None,
        today: Optional[dt.date] = None,
    ):
        self.db = db
        self.scorers = scorers or SCORERS
        self.today = today

    async def match(self, invoice: Invoice) -> Dict[str, Any]:
        """Auto-link the best candidate.

        With suggestions the invoice stays ``extracted`` so a later run can
        still auto-match it; with none it becomes ``unmatched``.

        Returns ``{"invoice_id", "matched", "transaction_id", "confidence",
        "suggestions"}``; the caller commits.
        """
        if not invoice.can_match:
            raise MatchingError(
                "Invoice not in extracted state" if invoice.total_amount else "No amount found in invoice",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )

        scored = await self.score(invoice)
        best = scored[0] if scored else None
        if best is not None and best["score"] >= AUTO_MATCH_THRESHOLD:
            mark_matched(invoice, best["transaction"], confidence=best["score"] / 100.0, method="auto")
            sentry_metric_inc("invoice_matching.auto_matched")
            logger.info(
                "Invoice %s matched to transaction %s with confidence %s",
                invoice.id,
                best["transaction_id"],
                best["score"],
            )
            return {
                "invoice_id": invoice.id,
                "matched": True,
                "transaction_id": best["transaction_id"],
                "confidence": best["score"],
                "suggestions": [],
            }

        suggestions = self._suggestions(scored)
        if not suggestions:
            mark_unmatched(invoice)
        sentry_metric_inc("invoice_matching.unmatched", tags={"suggestions": str(bool(suggestions)).lower()})
        if suggestions:
            logger.info("Invoice %s has %d suggestions", invoice.id, len(suggestions))
        else:
            logger.info("Invoice %s unmatched - no candidates found", invoice.id)
        return {
            "invoice_id": invoice.id,
            "matched": False,
            "transaction_id": None,
            "confidence": None,
            "suggestions": [_public(s) for s in suggestions],
        }

    async def find_suggestions(self, invoice: Invoice) -> List[Dict[str, Any]]:
        """Suggestions without touching the invoice status."""
        if not invoice.total_amount:
            return []
        return [_public(s) for s in self._suggestions(await self.score(invoice))]

    async def score(self, invoice: Invoice) -> List[Dict[str, Any]]:
        scored = []
        for tx in await self.candidates(invoice):
            total, breakdown = score_candidate(invoice, tx, self.scorers)
            scored.append(
                {
                    "transaction": tx,
                    "transaction_id": tx.id,
                    "transaction_date": tx.transaction_date,
                    "description": tx.description,
                    "amount": float(tx.amount),
                    "score": total,
                    "breakdown": breakdown,
                }
            )
        # Stable sort keeps the most recent transaction first on ties.
        scored.sort(key=lambda s: -s["score"])
        return scored

    async def candidates(self, invoice: Invoice) -> List[Transaction]:
        start, end = self._date_range(invoice)
        low, high = self._amount_range(invoice)
        query = (
            select(Transaction)
            .where(
                Transaction.user_id == invoice.user_id,
                Transaction.invoice_id.is_(None),
                Transaction.transaction_type == TransactionType.DEBIT.value,
                Transaction.transaction_date >= start,
                Transaction.transaction_date <= end,
                Transaction.amount >= low,
                Transaction.amount <= high,
            )
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
            .limit(MAX_CANDIDATES)
        )
        return list((await self.db.execute(query)).scalars().unique().all())

    def _date_range(self, invoice: Invoice):
        if invoice.invoice_date:
            window = dt.timedelta(days=DATE_WINDOW_DAYS)
            return invoice.invoice_date - window, invoice.invoice_date + window
        today = self.today or dt.date.today()
        return today - dt.timedelta(days=NO_DATE_LOOKBACK_DAYS), today

    @staticmethod
    def _amount_range(invoice: Invoice):
        amount = float(invoice.total_amount)
        tolerance = max(amount * AMOUNT_TOLERANCE_RATE, AMOUNT_TOLERANCE_FLOOR)
        return amount - tolerance, amount + tolerance

    @staticmethod
    def _suggestions(scored: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [s for s in scored if s["score"] >= SUGGESTION_THRESHOLD][:MAX_SUGGESTIONS]


def _public(candidate: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in candidate.items() if k != "transaction"}
