import json

import pytest
from sqlalchemy import select

from ledgerly.models.tables import Category, LabeledExample, UserRule
from ledgerly.services.ml.auto_learn import LlmAutoLearnService, learnable_pattern
from ledgerly.services.ml.categorization_service import CategorizationService
from ledgerly.services.ml.category_cache import category_cache
from ledgerly.services.ml.llm_service import LlmService
from ledgerly.services.ml.rule_engine import CategorizationResult

from factories import DummyOpenAI, add_transaction


async def _category(db, slug):
    return (await db.execute(select(Category).where(Category.slug == slug))).scalar_one()


@pytest.mark.asyncio
async def test_confident_rule_hit_skips_embeddings(db, user, enqueued):
    tx = await add_transaction(db, user.id, "SWIGGY BANGALORE", 300)

    result = await CategorizationService(db, enable_llm=False).categorize(tx)
    assert result.category.slug == "food"
    assert result.confidence >= 0.7
    assert result.needs_embedding is False

    await db.refresh(tx)
    assert tx.category_id == result.category.id
    assert tx.ai_category_id == result.category.id
    assert tx.categorization_status == "completed"
    assert tx.meta["categorization_method"] == "system_rule"
    assert tx.meta["normalized_description"] == "swiggy bangalore"
    assert tx.meta["needs_embedding"] is False
    assert enqueued.calls == []


@pytest.mark.asyncio
async def test_unmatched_transaction_is_queued_for_embedding(db, user, enqueued):
    tx = await add_transaction(db, user.id, "QZXV KLMNOP", 300)

    result = await CategorizationService(db, enable_llm=False).categorize(tx)
    assert result.matched is False
    assert result.needs_embedding is True

    await db.refresh(tx)
    assert tx.category_id is None
    assert tx.categorization_status == "completed"
    assert tx.meta["needs_embedding"] is True
    assert enqueued.calls == [("generate_embeddings", (None, [tx.id], None))]


@pytest.mark.asyncio
async def test_reviewed_transaction_keeps_user_category(db, user):
    shopping = await _category(db, "shopping")
    tx = await add_transaction(db, user.id, "SWIGGY BANGALORE", 300, category_id=shopping.id, is_reviewed=True)

    result = await CategorizationService(db, enable_llm=False, queue_embeddings=False).categorize(tx)
    await db.refresh(tx)
    assert tx.category_id == shopping.id
    assert tx.ai_category_id == result.category.id != shopping.id


@pytest.mark.asyncio
async def test_transfer_metadata(db, user):
    tx = await add_transaction(db, user.id, "Paytm wallet topup", 1000)
    await CategorizationService(db, enable_llm=False, queue_embeddings=False).categorize(tx)
    await db.refresh(tx)
    assert tx.tx_kind == "transfer_wallet"
    assert tx.counterparty_name == "Paytm"
    assert tx.meta["transfer_detected"] is True


@pytest.mark.asyncio
async def test_stored_embeddings_place_unknown_merchants(db, user, enqueued):
    health = await _category(db, "health")
    db.add(
        LabeledExample(
            user_id=user.id,
            category_id=health.id,
            description="QWERTY ZXCV",
            normalized_description="qwerty zxcv",
            embedding=[1.0, 0.0, 0.0],
        )
    )
    await db.commit()
    tx = await add_transaction(db, user.id, "QWERTY ZXCV 2", 800, embedding=[1.0, 0.0, 0.0])

    result = await CategorizationService(db, enable_llm=False).categorize(tx)
    assert result.category.slug == "health"
    assert result.method == "embedding_feedback"
    assert enqueued.calls == []


@pytest.mark.asyncio
async def test_llm_fallback_learns_rule_and_example(db, user, enqueued):
    tx = await add_transaction(db, user.id, "QWERTY ZXCV", 4200)
    reply = json.dumps({"category": "business", "confidence": 0.95, "explanation": "Vendor payment"})
    service = CategorizationService(db, llm=LlmService(client=DummyOpenAI(replies=[reply])))

    result = await service.categorize(tx)
    assert result.method == "llm"
    assert result.confidence == 0.9

    rule = (await db.execute(select(UserRule).where(UserRule.user_id == user.id))).scalar_one()
    assert rule.pattern == "qwerty zxcv"
    assert rule.source == "llm_auto"
    assert rule.priority == -1
    example = (await db.execute(select(LabeledExample))).scalar_one()
    assert example.source == "llm"
    assert enqueued.calls == [("generate_embeddings", (None, [tx.id], [example.id]))]


@pytest.mark.asyncio
async def test_unmatched_transaction_is_completed_without_category(db, user):
    tx = await add_transaction(db, user.id, "QWERTY ZXCV", 10)
    result = await CategorizationService(db, enable_llm=False, queue_embeddings=False).categorize(tx)
    assert not result.matched
    await db.refresh(tx)
    assert tx.categorization_status == "completed"
    assert tx.category_id is None
    assert tx.meta["needs_embedding"] is True


def test_learnable_pattern_skips_numbers_and_short_words():
    assert learnable_pattern("POS 4567 STARBUCKS COFFEE") == "starbucks pos coffee"
    assert learnable_pattern("AB 12") is None


@pytest.mark.asyncio
async def test_auto_learn_ignores_low_confidence(db, user):
    await category_cache.ensure_loaded(db)
    tx = await add_transaction(db, user.id, "QWERTY ZXCV", 10)
    result = CategorizationResult(category=category_cache.find_by_slug("business"), confidence=0.8, method="llm")

    outcome = await LlmAutoLearnService(db).learn(tx, result)
    assert outcome == {"learned": False, "message": "Confidence too low"}
