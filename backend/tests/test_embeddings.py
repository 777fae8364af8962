import pytest
from sqlalchemy import select

from ledgerly.models.tables import Category, LabeledExample
from ledgerly.services.ml.embedding_service import EmbeddingService, VectorPool, cosine_similarity, nearest

from factories import DummyOpenAI, add_transaction


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0
    assert cosine_similarity([0, 0], [1, 0]) == 0.0


def test_nearest_orders_and_filters():
    pool = VectorPool.from_rows(
        [
            (1, (10, None), [1.0, 0.0]),
            (2, (11, 5), [0.9, 0.1]),
            (3, (12, None), [0.0, 1.0]),
            (4, (13, None), [2.0, 0.4]),
        ]
    )
    hits = nearest([1.0, 0.0], pool, exclude_id=1)
    assert [h.id for h in hits] == [2, 4]
    assert hits[0].category_id == 11
    assert hits[0].subcategory_id == 5
    assert nearest([1.0, 0.0], pool, limit=1)[0].id == 1


def test_vector_pool_drops_mismatched_rows():
    pool = VectorPool.from_rows([(1, None, [1.0, 0.0]), (2, None, [1.0, 0.0, 0.0]), (3, None, None)])
    assert pool.ids.tolist() == [1]
    assert pool.similarities([0.0, 3.0]).tolist() == [0.0]
    assert pool.similarities([1.0, 0.0, 0.0]) is None
    assert nearest([1.0], VectorPool.from_rows([])) == []


@pytest.mark.asyncio
async def test_generate_batch_embeds_normalized_descriptions(db, user):
    tx = await add_transaction(db, user.id, "POS 4567 STARBUCKS COFFEE", 250)
    client = DummyOpenAI(vectors={"starbucks pos 4567 coffee": [1.0, 0.0, 0.0]})

    outcome = await EmbeddingService(db, client=client).generate_batch(user_id=user.id)
    assert outcome["success"] is True
    assert outcome["generated"] == 1
    assert client.embedding_calls == [["starbucks pos 4567 coffee"]]
    await db.refresh(tx)
    assert tx.embedding == [1.0, 0.0, 0.0]
    assert tx.embedding_generated_at is not None


@pytest.mark.asyncio
async def test_generate_batch_without_openai_reports_error(db, user, monkeypatch):
    from ledgerly.services.ml import embedding_service

    monkeypatch.setattr(embedding_service, "openai_configured", lambda: False)
    outcome = await EmbeddingService(db).generate_batch(user_id=user.id)
    assert outcome["success"] is False
    assert outcome["errors"] == ["OpenAI API key not configured"]


@pytest.mark.asyncio
async def test_categorize_prefers_labeled_examples(db, user):
    health = (await db.execute(select(Category).where(Category.slug == "health"))).scalar_one()
    db.add(
        LabeledExample(
            user_id=user.id,
            category_id=health.id,
            description="DR MEHTA CLINIC",
            normalized_description="dr mehta clinic",
            embedding=[1.0, 0.0, 0.0],
        )
    )
    await db.commit()
    tx = await add_transaction(db, user.id, "DR MEHTA", 800, embedding=[1.0, 0.0, 0.0])

    result = await EmbeddingService(db).categorize(tx)
    assert result.category.slug == "health"
    assert result.method == "embedding_feedback"
    assert result.confidence == pytest.approx(0.97)


@pytest.mark.asyncio
async def test_similar_uncategorized_uses_distance(db, user):
    source = await add_transaction(db, user.id, "DR MEHTA", 800, embedding=[1.0, 0.0, 0.0])
    close = await add_transaction(db, user.id, "DR MEHTA 2", 800, embedding=[0.99, 0.05, 0.0])
    await add_transaction(db, user.id, "SOMETHING ELSE", 800, embedding=[0.0, 1.0, 0.0])

    similar = await EmbeddingService(db).similar_uncategorized(source, 0.15, 10)
    assert [tx.id for tx in similar] == [close.id]
