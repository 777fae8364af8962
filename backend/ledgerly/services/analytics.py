"""Spending analytics over a set of transactions.

Everything here works on loaded ``Transaction`` rows so the same code runs
inline for small sets and in the ``compute_statement_analytics`` actor for
whole statements, independent of the database dialect.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.models.enums import AnalyticsStatus, StatementStatus
from ledgerly.models.tables import Statement, StatementAnalytic, Transaction
from ledgerly.services.ml.normalization import first_words
from ledgerly.utils.helpers import utcnow

logger = logging.getLogger(__name__)

MONTHS = 12
TOP_N = 10
RECURRING_MIN_OCCURRENCES = 3
RECURRING_AMOUNT_TOLERANCE = 0.2
SILENT_DRAIN_MAX = 200
SMALL_SPEND_MAX = 500
INLINE_ROW_LIMIT = 1000
FRESH_FOR = dt.timedelta(hours=1)


def placeholder() -> Dict[str, Any]:
    return {
        "monthly_spend": [],
        "top_categories": [],
        "top_merchants": [],
        "income_expense_ratio": {"income": 0.0, "expense": 0.0, "ratio": None, "savings_rate": None},
        "recurring_expenses": {"total_monthly": 0.0, "items": []},
        "silent_drains": {"merchants": [], "total": 0.0, "small_transaction_count": 0},
        "largest_expense": None,
        "weekend_vs_weekday": {},
        "analytics_loading": True,
    }


def merchant_name(description: Optional[str]) -> str:
    return first_words(description, 3)


def _month_key(day: dt.date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def _shift_month(day: dt.date, months: int) -> dt.date:
    index = day.year * 12 + day.month - 1 - months
    return dt.date(index // 12, index % 12 + 1, 1)


class TransactionAnalyticsService:
    def __init__(self, transactions: Iterable[Transaction], today: Optional[dt.date] = None):
        self.transactions = list(transactions)
        self.debits = [t for t in self.transactions if t.is_debit]
        self.credits = [t for t in self.transactions if t.is_credit]
        self.today = today or dt.date.today()

    def compute(self) -> Dict[str, Any]:
        return {
            "monthly_spend": self.monthly_spend(),
            "top_categories": self.top_categories(),
            "top_merchants": self.top_merchants(),
            "income_expense_ratio": self.income_expense_ratio(),
            "recurring_expenses": self.recurring_expenses(),
            "silent_drains": self.silent_drains(),
            "largest_expense": self.largest_expense(),
            "weekend_vs_weekday": self.weekend_vs_weekday(),
        }

    def monthly_spend(self) -> List[Dict[str, Any]]:
        """Debit totals for the last twelve months with activity."""
        first_month = _shift_month(self.today, MONTHS - 1)
        totals: Dict[str, Dict[str, Any]] = {}
        for tx in self.debits:
            if tx.transaction_date < first_month or tx.transaction_date > self.today:
                continue
            key = _month_key(tx.transaction_date)
            bucket = totals.setdefault(key, {"month": key, "amount": 0.0, "transaction_count": 0})
            bucket["amount"] += float(tx.amount)
            bucket["transaction_count"] += 1
        return [
            {**bucket, "amount": round(bucket["amount"], 2)} for _, bucket in sorted(totals.items())
        ]

    def top_categories(self) -> List[Dict[str, Any]]:
        totals: Dict[int, Dict[str, Any]] = {}
        for tx in self.debits:
            category = tx.effective_category
            if category is None:
                continue
            bucket = totals.setdefault(
                category.id,
                {
                    "id": category.id,
                    "name": category.name,
                    "color": category.color,
                    "icon": category.icon,
                    "amount": 0.0,
                    "transaction_count": 0,
                },
            )
            bucket["amount"] += float(tx.amount)
            bucket["transaction_count"] += 1
        ranked = sorted(totals.values(), key=lambda b: -b["amount"])[:TOP_N]
        return [{**b, "amount": round(b["amount"], 2)} for b in ranked]

    def top_merchants(self) -> List[Dict[str, Any]]:
        totals = self._by_merchant(self.debits)
        ranked = sorted(totals.items(), key=lambda item: -item[1]["amount"])[:TOP_N]
        return [
            {"name": name, "amount": round(data["amount"], 2), "transaction_count": len(data["amounts"])}
            for name, data in ranked
        ]

    def income_expense_ratio(self) -> Dict[str, Any]:
        income = round(sum(float(t.amount) for t in self.credits), 2)
        expense = round(sum(float(t.amount) for t in self.debits), 2)
        ratio = round(income / expense, 2) if expense else None
        savings_rate = round((income - expense) / income * 100, 2) if income else None
        return {"income": income, "expense": expense, "ratio": ratio, "savings_rate": savings_rate}

    def recurring_expenses(self) -> Dict[str, Any]:
        items = []
        for name, data in self._by_merchant(self.debits).items():
            amounts = data["amounts"]
            if len(amounts) < RECURRING_MIN_OCCURRENCES:
                continue
            average = sum(amounts) / len(amounts)
            if not average or any(abs(a - average) / average >= RECURRING_AMOUNT_TOLERANCE for a in amounts):
                continue
            items.append(
                {
                    "merchant": name,
                    "description": data["description"],
                    "average_amount": round(average, 2),
                    "frequency": len(amounts),
                    "last_date": max(data["dates"]).isoformat(),
                }
            )
        items.sort(key=lambda i: -i["average_amount"])
        items = items[:TOP_N]
        return {"total_monthly": round(sum(i["average_amount"] for i in items), 2), "items": items}

    def silent_drains(self) -> Dict[str, Any]:
        """Many small debits that add up."""
        small = [t for t in self.debits if float(t.amount) <= SILENT_DRAIN_MAX]
        merchants = [
            {
                "merchant": name,
                "total": round(data["amount"], 2),
                "transaction_count": len(data["amounts"]),
                "average": round(data["amount"] / len(data["amounts"]), 2),
            }
            for name, data in self._by_merchant(small).items()
        ]
        merchants.sort(key=lambda m: -m["total"])
        return {
            "merchants": merchants[:TOP_N],
            "total": round(sum(float(t.amount) for t in small), 2),
            "small_transaction_count": sum(1 for t in self.debits if float(t.amount) <= SMALL_SPEND_MAX),
        }

    def largest_expense(self) -> Optional[Dict[str, Any]]:
        if not self.debits:
            return None
        tx = max(self.debits, key=lambda t: float(t.amount))
        category = tx.effective_category
        return {
            "transaction_id": tx.id,
            "amount": float(tx.amount),
            "description": tx.description,
            "date": tx.transaction_date.isoformat(),
            "category": category.name if category else None,
        }

    def weekend_vs_weekday(self) -> Dict[str, Dict[str, Any]]:
        buckets = {"weekend": [], "weekday": []}
        for tx in self.debits:
            key = "weekend" if tx.transaction_date.weekday() >= 5 else "weekday"
            buckets[key].append(float(tx.amount))
        result = {}
        for key, amounts in buckets.items():
            total = round(sum(amounts), 2)
            result[key] = {
                "total": total,
                "count": len(amounts),
                "average": round(total / len(amounts), 2) if amounts else 0.0,
            }
        return result

    @staticmethod
    def _by_merchant(transactions: Iterable[Transaction]) -> Dict[str, Dict[str, Any]]:
        groups: Dict[str, Dict[str, Any]] = defaultdict(
            lambda: {"amount": 0.0, "amounts": [], "dates": [], "description": None}
        )
        for tx in transactions:
            name = merchant_name(tx.description)
            if not name:
                continue
            group = groups[name]
            group["amount"] += float(tx.amount)
            group["amounts"].append(float(tx.amount))
            group["dates"].append(tx.transaction_date)
            group["description"] = group["description"] or tx.description
        return groups


def is_fresh(analytic: Optional[StatementAnalytic], now: Optional[dt.datetime] = None) -> bool:
    if analytic is None or analytic.status != AnalyticsStatus.COMPLETED.value or analytic.computed_at is None:
        return False
    return analytic.computed_at > (now or utcnow()) - FRESH_FOR


async def compute_statement_analytics(db: AsyncSession, statement_id: int) -> Optional[Dict[str, Any]]:
    """Compute and store analytics for a parsed statement."""
    statement = await db.get(Statement, statement_id)
    if statement is None or statement.status != StatementStatus.PARSED.value:
        logger.info("Skipping analytics for statement %s (not parsed)", statement_id)
        return None

    analytic = (
        await db.execute(select(StatementAnalytic).where(StatementAnalytic.statement_id == statement_id))
    ).scalar_one_or_none()
    if analytic is None:
        analytic = StatementAnalytic(statement_id=statement_id, payload={})
        db.add(analytic)
    elif analytic.status == AnalyticsStatus.RUNNING.value:
        return None
    analytic.status = AnalyticsStatus.RUNNING.value
    analytic.started_at = utcnow()
    analytic.error_message = None
    await db.commit()

    try:
        transactions = (
            await db.execute(select(Transaction).where(Transaction.statement_id == statement_id))
        ).scalars().unique().all()
        payload = TransactionAnalyticsService(transactions).compute()
    except Exception as exc:
        analytic.status = AnalyticsStatus.FAILED.value
        analytic.error_message = str(exc)
        await db.commit()
        logger.error("Failed to compute analytics for statement %s: %s", statement_id, exc)
        raise

    analytic.payload = payload
    analytic.status = AnalyticsStatus.COMPLETED.value
    analytic.computed_at = utcnow()
    await db.commit()
    logger.info("Analytics computed for statement %s", statement_id)
    return payload
