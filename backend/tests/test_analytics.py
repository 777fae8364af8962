import datetime as dt

import pytest
from sqlalchemy import select

from ledgerly.models.tables import Category, Statement, StatementAnalytic, Transaction
from ledgerly.services.analytics import TransactionAnalyticsService, compute_statement_analytics, is_fresh, placeholder
from ledgerly.utils.helpers import utcnow

from factories import add_transaction


def _tx(id, description, amount, day, kind="debit", category=None):
    return Transaction(
        id=id,
        user_id=1,
        description=description,
        amount=amount,
        transaction_type=kind,
        transaction_date=day,
        category=category,
    )


@pytest.fixture
def sample():
    shopping = Category(id=3, name="Shopping", slug="shopping", color="#ec4899", icon="shopping-bag")
    txs = [
        _tx(1, "NETFLIX SUBSCRIPTION", 649, dt.date(2026, 7, 5)),
        _tx(2, "NETFLIX SUBSCRIPTION", 649, dt.date(2026, 8, 5)),
        _tx(3, "NETFLIX SUBSCRIPTION", 649, dt.date(2026, 9, 5)),
        _tx(4, "APPLE STORE", 80000, dt.date(2026, 9, 12), category=shopping),
        _tx(5, "NEFT ACME SALARY", 100000, dt.date(2026, 9, 1), kind="credit"),
    ]
    txs += [_tx(10 + i, "CHAI POINT", 20, dt.date(2026, 9, 10)) for i in range(5)]
    return TransactionAnalyticsService(txs, today=dt.date(2026, 9, 30))


def test_income_expense_ratio(sample):
    assert sample.income_expense_ratio() == {
        "income": 100000.0,
        "expense": 82047.0,
        "ratio": 1.22,
        "savings_rate": 17.95,
    }


def test_monthly_spend(sample):
    assert sample.monthly_spend() == [
        {"month": "2026-07", "amount": 649.0, "transaction_count": 1},
        {"month": "2026-08", "amount": 649.0, "transaction_count": 1},
        {"month": "2026-09", "amount": 80749.0, "transaction_count": 7},
    ]


def test_recurring_and_silent_drains(sample):
    recurring = sample.recurring_expenses()
    assert [i["merchant"] for i in recurring["items"]] == ["netflix subscription", "chai point"]
    assert recurring["items"][0]["frequency"] == 3
    assert recurring["total_monthly"] == 669.0

    drains = sample.silent_drains()
    assert drains["merchants"] == [
        {"merchant": "chai point", "total": 100.0, "transaction_count": 5, "average": 20.0}
    ]
    assert drains["small_transaction_count"] == 5


def test_largest_expense_categories_and_weekends(sample):
    largest = sample.largest_expense()
    assert largest["transaction_id"] == 4
    assert largest["category"] == "Shopping"
    assert sample.top_categories()[0]["name"] == "Shopping"
    split = sample.weekend_vs_weekday()
    assert split["weekend"]["count"] == 3
    assert split["weekday"]["count"] == 6


def test_empty_set_and_placeholder():
    empty = TransactionAnalyticsService([]).compute()
    assert empty["largest_expense"] is None
    assert empty["income_expense_ratio"]["ratio"] is None
    assert placeholder()["analytics_loading"] is True


def test_is_fresh():
    now = utcnow()
    assert not is_fresh(None)
    assert is_fresh(StatementAnalytic(status="completed", computed_at=now - dt.timedelta(minutes=5)), now)
    assert not is_fresh(StatementAnalytic(status="completed", computed_at=now - dt.timedelta(hours=2)), now)
    assert not is_fresh(StatementAnalytic(status="running", computed_at=now), now)


@pytest.mark.asyncio
async def test_compute_statement_analytics_stores_payload(db, user):
    statement = Statement(user_id=user.id, file_name="a.csv", file_type="csv", status="parsed", meta={})
    pending = Statement(user_id=user.id, file_name="b.csv", file_type="csv", status="pending", meta={})
    db.add_all([statement, pending])
    await db.commit()
    await add_transaction(db, user.id, "APPLE STORE", 5000, statement_id=statement.id)

    payload = await compute_statement_analytics(db, statement.id)
    assert payload["largest_expense"]["amount"] == 5000.0
    analytic = (await db.execute(select(StatementAnalytic))).scalar_one()
    assert analytic.status == "completed"
    assert analytic.computed_at is not None

    assert await compute_statement_analytics(db, pending.id) is None
