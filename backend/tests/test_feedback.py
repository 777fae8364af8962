import pytest
from sqlalchemy import select

from ledgerly.core.errors import ValidationError
from ledgerly.models.tables import Category, GlobalPattern, Subcategory
from ledgerly.services.ml import rules
from ledgerly.services.ml.feedback_service import FeedbackService

from factories import add_transaction


async def _category(db, slug):
    return (await db.execute(select(Category).where(Category.slug == slug))).scalar_one()


@pytest.mark.asyncio
async def test_correction_trains_rule_example_and_patterns(db, user, enqueued):
    food = await _category(db, "food")
    shopping = await _category(db, "shopping")
    # another user already taught the AI's answer
    food_pattern = await rules.record_global_pattern(db, "swiggy bangalore", food.id, user_id=999)
    await db.commit()
    tx = await add_transaction(db, user.id, "SWIGGY BANGALORE", 300, category_id=food.id, ai_category_id=food.id)

    outcome = await FeedbackService(db).process_correction(tx, shopping.id)

    assert outcome["transaction"].category_id == shopping.id
    assert outcome["transaction"].is_reviewed is True
    assert outcome["transaction"].meta["user_corrected"] is True
    assert outcome["transaction"].meta["previous_category"] == "food"
    assert outcome["rule"].pattern == "swiggy bangalore"
    assert outcome["rule"].category_id == shopping.id
    assert outcome["example"].category_id == shopping.id
    assert outcome["global_pattern"].category_id == shopping.id

    await db.refresh(food_pattern)
    assert food_pattern.occurrence_count == 2
    assert enqueued.calls == [("generate_embeddings", (None, None, [outcome["example"].id]))]


@pytest.mark.asyncio
async def test_correction_rejects_foreign_subcategory(db, user):
    shopping = await _category(db, "shopping")
    delivery = (await db.execute(select(Subcategory).where(Subcategory.slug == "food-delivery"))).scalar_one()
    tx = await add_transaction(db, user.id, "SWIGGY BANGALORE", 300)

    with pytest.raises(ValidationError):
        await FeedbackService(db).process_correction(tx, shopping.id, delivery.id)
    assert (await db.execute(select(GlobalPattern))).first() is None


@pytest.mark.asyncio
async def test_apply_to_similar_copies_category(db, user):
    shopping = await _category(db, "shopping")
    source = await add_transaction(db, user.id, "ACME STORE", 500, embedding=[1.0, 0.0, 0.0])
    twin = await add_transaction(db, user.id, "ACME STORE 2", 520, embedding=[0.99, 0.05, 0.0])
    other = await add_transaction(db, user.id, "RANDOM", 10, embedding=[0.0, 1.0, 0.0])

    outcome = await FeedbackService(db).apply_to_similar(source, shopping.id)
    assert outcome == {"updated": 1, "ids": [twin.id]}
    await db.refresh(twin)
    await db.refresh(other)
    assert twin.category_id == shopping.id
    assert twin.is_reviewed is False
    assert other.category_id is None
