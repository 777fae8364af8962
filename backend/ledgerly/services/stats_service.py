"""Transaction totals for the stats endpoint.

Base stats are one aggregate query plus a grouped debit sum. The
``detailed`` variant adds :mod:`ledgerly.services.analytics`: computed
inline for small sets, read from ``statement_analytics`` for a single
statement, or a loading placeholder while the actor catches up.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.models.enums import AnalyticsStatus, StatementStatus, TransactionType
from ledgerly.models.tables import Category, Statement, StatementAnalytic, Transaction
from ledgerly.services import analytics
from ledgerly.services.statement_parser import queue_analytics
from ledgerly.services.transactions import TransactionFilters

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


class TransactionStatsService:
    def __init__(self, db: AsyncSession, user_id: int, filters: Optional[TransactionFilters] = None):
        self.db = db
        self.user_id = user_id
        self.filters = filters or TransactionFilters()

    @property
    def _where(self):
        return self.filters.conditions(self.user_id)

    async def compute(self, detailed: bool = False) -> Dict[str, Any]:
        stats = await self.base_stats()
        if detailed:
            stats["analytics"] = await self.detailed()
        return stats

    async def base_stats(self) -> Dict[str, Any]:
        is_debit = Transaction.transaction_type == TransactionType.DEBIT.value
        is_credit = Transaction.transaction_type == TransactionType.CREDIT.value
        row = (
            await self.db.execute(
                select(
                    func.count(Transaction.id),
                    func.coalesce(func.sum(Transaction.amount).filter(is_debit), 0),
                    func.coalesce(func.sum(Transaction.amount).filter(is_credit), 0),
                    func.count(Transaction.id).filter(is_debit),
                    func.count(Transaction.id).filter(is_credit),
                    func.count(Transaction.id).filter(Transaction.category_id.is_(None)),
                ).where(*self._where)
            )
        ).one()
        total, debits, credits, debit_count, credit_count, uncategorized = row
        debits = round(float(debits or 0), 2)
        credits = round(float(credits or 0), 2)
        return {
            "total_count": int(total or 0),
            "total_debits": debits,
            "total_credits": credits,
            "net": round(credits - debits, 2),
            "by_category": await self._by_category(),
            "by_type": {
                TransactionType.DEBIT.value: int(debit_count or 0),
                TransactionType.CREDIT.value: int(credit_count or 0),
            },
            "uncategorized_count": int(uncategorized or 0),
        }

    async def _by_category(self) -> Dict[str, float]:
        """Debit totals keyed by effective category name."""
        effective_id = func.coalesce(Transaction.category_id, Transaction.ai_category_id)
        rows = (
            await self.db.execute(
                select(effective_id, func.sum(Transaction.amount))
                .where(*self._where, Transaction.transaction_type == TransactionType.DEBIT.value)
                .group_by(effective_id)
            )
        ).all()
        ids = [category_id for category_id, _ in rows if category_id is not None]
        names = {}
        if ids:
            names = dict((await self.db.execute(select(Category.id, Category.name).where(Category.id.in_(ids)))).all())
        totals: Dict[str, float] = {}
        for category_id, amount in rows:
            name = names.get(category_id, UNCATEGORIZED)
            totals[name] = round(totals.get(name, 0.0) + float(amount or 0), 2)
        return totals

    async def detailed(self) -> Dict[str, Any]:
        if self.filters.statement_id is not None:
            return await self._statement_analytics(self.filters.statement_id)

        count = (
            await self.db.execute(select(func.count(Transaction.id)).where(*self._where))
        ).scalar_one()
        if count >= analytics.INLINE_ROW_LIMIT:
            return analytics.placeholder()
        transactions = (
            await self.db.execute(select(Transaction).where(*self._where))
        ).scalars().unique().all()
        return analytics.TransactionAnalyticsService(transactions).compute()

    async def _statement_analytics(self, statement_id: int) -> Dict[str, Any]:
        statement = (
            await self.db.execute(
                select(Statement).where(Statement.id == statement_id, Statement.user_id == self.user_id)
            )
        ).scalar_one_or_none()
        if statement is None or statement.status != StatementStatus.PARSED.value:
            return analytics.placeholder()

        count = (
            await self.db.execute(select(func.count(Transaction.id)).where(Transaction.statement_id == statement_id))
        ).scalar_one()
        if count < analytics.INLINE_ROW_LIMIT:
            transactions = (
                await self.db.execute(select(Transaction).where(Transaction.statement_id == statement_id))
            ).scalars().unique().all()
            return analytics.TransactionAnalyticsService(transactions).compute()

        analytic = (
            await self.db.execute(select(StatementAnalytic).where(StatementAnalytic.statement_id == statement_id))
        ).scalar_one_or_none()
        if analytics.is_fresh(analytic):
            return dict(analytic.payload or {})
        if analytic is None or analytic.status not in (
            AnalyticsStatus.QUEUED.value,
            AnalyticsStatus.RUNNING.value,
        ):
            await queue_analytics(self.db, statement_id)
        return analytics.placeholder()
