import pytest
from sqlalchemy import select

from ledgerly.models.tables import Category, GlobalPattern, UserRule
from ledgerly.services.ml.category_cache import category_cache
from ledgerly.services.ml.rule_engine import RuleEngine, no_match, tx_kind_for

from factories import add_transaction


async def _category(db, slug):
    return (await db.execute(select(Category).where(Category.slug == slug))).scalar_one()


def test_tx_kind_for_categories():
    assert tx_kind_for("salary", "credit") == "income_salary"
    assert tx_kind_for("salary", "debit") == "spend"
    assert tx_kind_for("emi", "debit") == "loan_emi"
    assert tx_kind_for("food", "debit") == "spend"
    assert not no_match().matched


@pytest.mark.asyncio
async def test_system_rules_pick_category_and_subcategory(db, user):
    tx = await add_transaction(db, user.id, "POS 4567 STARBUCKS COFFEE", 250)
    engine = await RuleEngine.load(db, user.id)

    result = engine.categorize(tx)
    assert result.category.slug == "food"
    assert result.subcategory.slug == "food-dining"
    assert result.method == "system_rule"
    assert result.confidence == pytest.approx(0.83)
    assert result.tx_kind == "spend"


@pytest.mark.asyncio
async def test_transfers_win_over_keyword_rules(db, user):
    tx = await add_transaction(db, user.id, "UPI/RAHUL SHARMA/rahul.sharma@okaxis/payment", 500)
    engine = await RuleEngine.load(db, user.id)

    result = engine.categorize(tx)
    assert result.category.slug == "transfer"
    assert result.subcategory.slug == "transfer-p2p"
    assert result.method == "transfer_classifier"
    assert result.counterparty_name == "RAHUL SHARMA"


@pytest.mark.asyncio
async def test_user_rule_beats_system_rule_and_records_match(db, user):
    shopping = await _category(db, "shopping")
    rule = UserRule(
        user_id=user.id,
        category_id=shopping.id,
        pattern="starbucks",
        pattern_type="keyword",
        match_field="normalized",
        is_active=True,
        match_count=0,
        priority=0,
    )
    db.add(rule)
    await db.commit()
    tx = await add_transaction(db, user.id, "POS 4567 STARBUCKS COFFEE", 250)

    engine = await RuleEngine.load(db, user.id)
    result = engine.categorize(tx)
    assert result.category.slug == "shopping"
    assert result.method == "user_rule"
    assert result.confidence == pytest.approx(0.85)
    assert rule.match_count == 1


@pytest.mark.asyncio
async def test_verified_global_patterns_are_last_resort(db, user):
    business = await _category(db, "business")
    db.add(
        GlobalPattern(
            pattern="zenith tiles",
            pattern_type="keyword",
            category_id=business.id,
            user_count=3,
            agreement_count=3,
            occurrence_count=3,
            match_count=0,
            is_verified=True,
            user_ids=[7, 8, 9],
        )
    )
    await db.commit()
    tx = await add_transaction(db, user.id, "ZENITH TILES ORDER 42", 1200)

    engine = await RuleEngine.load(db, user.id)
    result = engine.categorize(tx)
    assert result.category.slug == "business"
    assert result.method == "global_pattern"
    assert result.confidence == pytest.approx(0.81)


@pytest.mark.asyncio
async def test_categorize_batch_returns_only_hits(db, user):
    hit = await add_transaction(db, user.id, "SWIGGY BANGALORE", 300)
    miss = await add_transaction(db, user.id, "QWERTY ZXCV", 10)

    engine = await RuleEngine.load(db, user.id)
    results = engine.categorize_batch([hit, miss])
    assert list(results) == [hit.id]
    assert results[hit.id].subcategory.slug == "food-delivery"


@pytest.mark.asyncio
async def test_category_cache_round_trips_through_redis(db, user, fake_redis):
    await category_cache.ensure_loaded(db)
    assert category_cache.stats()["size"] == 15
    assert fake_redis.store

    food = category_cache.find_by_slug("food")
    assert category_cache.resolve_subcategory(food.id, "delivery").slug == "food-delivery"
    assert category_cache.resolve_subcategory(food.id, "food-delivery").slug == "food-delivery"
    assert category_cache.default_subcategory(food.id).slug == "food-dining"

    category_cache.clear()
    assert category_cache.stale
    await category_cache.ensure_loaded(db)
    assert category_cache.find_by_id(food.id).slug == "food"
