import json

import pytest

from ledgerly.services.ml.category_cache import category_cache
from ledgerly.services.ml.llm_service import LlmService

from factories import DummyOpenAI, add_transaction


@pytest.mark.asyncio
async def test_parse_response_clamps_confidence_and_falls_back_to_other(db, user):
    await category_cache.ensure_loaded(db)
    tx = await add_transaction(db, user.id, "QWERTY ZXCV", 99)
    service = LlmService(client=DummyOpenAI())

    result = service.parse_response(json.dumps({"category": "Food", "subcategory": "delivery", "confidence": 0.99}), tx)
    assert result.category.slug == "food"
    assert result.subcategory.slug == "food-delivery"
    assert result.confidence == 0.9
    assert result.method == "llm"

    unknown = service.parse_response(json.dumps({"category": "spaceships", "confidence": "abc"}), tx)
    assert unknown.category.slug == "other"
    assert unknown.confidence == 0.7

    low = service.parse_response(json.dumps({"category": "tax", "confidence": 0.1, "tx_kind": "weird"}), tx)
    assert low.confidence == 0.5
    assert low.tx_kind == "tax"


@pytest.mark.asyncio
async def test_parse_response_rejects_garbage(db, user):
    await category_cache.ensure_loaded(db)
    tx = await add_transaction(db, user.id, "QWERTY ZXCV", 99)
    service = LlmService(client=DummyOpenAI())
    assert service.parse_response("not json", tx) is None
    assert service.parse_response(json.dumps({"explanation": "no category"}), tx) is None
    assert service.parse_response(None, tx) is None


@pytest.mark.asyncio
async def test_categorize_sends_json_mode_request(db, user):
    await category_cache.ensure_loaded(db)
    tx = await add_transaction(db, user.id, "ACME CONSULTING RETAINER", 15000)
    client = DummyOpenAI(replies=[json.dumps({"category": "business", "confidence": 0.8, "counterparty": "Acme"})])

    result = await LlmService(client=client).categorize(tx)
    assert result.category.slug == "business"
    assert result.counterparty_name == "Acme"
    call = client.chat_calls[0]
    assert call["response_format"] == {"type": "json_object"}
    assert "business" in call["messages"][0]["content"]


@pytest.mark.asyncio
async def test_batch_response_matches_ids(db, user):
    await category_cache.ensure_loaded(db)
    a = await add_transaction(db, user.id, "ACME CONSULTING", 100)
    b = await add_transaction(db, user.id, "QWERTY ZXCV", 200)
    reply = json.dumps(
        {
            "results": [
                {"id": a.id, "category": "business", "confidence": 0.8},
                {"id": b.id, "category": "other"},
                {"id": 99999, "category": "food"},
                {"id": "junk"},
            ]
        }
    )
    client = DummyOpenAI(replies=[reply])

    results = await LlmService(client=client).categorize_batch([a, b])
    assert set(results) == {a.id, b.id}
    assert results[a.id].category.slug == "business"
    assert len(client.chat_calls) == 1
