import math

import pytest
from sqlalchemy import select

from ledgerly.models.tables import Category, GlobalPattern, UserRule
from ledgerly.services.ml import rules

from factories import add_transaction


def _rule(**overrides):
    values = dict(
        pattern="starbucks",
        pattern_type="keyword",
        match_field="normalized",
        is_active=True,
        match_count=0,
        category_id=1,
    )
    values.update(overrides)
    return UserRule(**values)


def _pattern(**overrides):
    values = dict(
        pattern="acme widgets",
        pattern_type="keyword",
        category_id=1,
        user_count=1,
        agreement_count=1,
        occurrence_count=1,
        match_count=0,
        is_verified=False,
        user_ids=[1],
    )
    values.update(overrides)
    return GlobalPattern(**values)


def test_keyword_rule_confidence_grows_with_matches():
    assert rules.rule_confidence(_rule(), "starbucks pos 4567 coffee") == pytest.approx(0.85)
    assert rules.rule_confidence(_rule(match_count=5), "starbucks pos") == pytest.approx(0.90)
    assert rules.rule_confidence(_rule(match_count=50), "starbucks pos") == pytest.approx(0.95)


def test_keyword_rule_requires_every_word_on_word_boundaries():
    rule = _rule(pattern="starbucks coffee")
    assert rules.rule_confidence(rule, "starbucks pos coffee") is not None
    assert rules.rule_confidence(rule, "starbucksin pos coffee") is None


def test_exact_and_regex_rules():
    assert rules.rule_confidence(_rule(pattern_type="exact", pattern="rent"), "rent") == 0.98
    assert rules.rule_confidence(_rule(pattern_type="exact", pattern="rent"), "rent march") is None
    assert rules.rule_confidence(_rule(pattern_type="regex", pattern=r"^neft.*salary"), "neft acme salary") == 0.90
    assert rules.rule_confidence(_rule(pattern_type="regex", pattern="("), "anything") is None


def test_inactive_and_amount_range_rules_never_match():
    assert rules.rule_confidence(_rule(is_active=False), "starbucks") is None
    assert rules.rule_confidence(_rule(match_field="amount_range"), "starbucks") is None


def test_global_pattern_confidence_is_capped():
    assert rules.global_pattern_confidence(_pattern(user_count=1)) == pytest.approx(0.77)
    expected = 0.75 + 0.06 + min(math.log(11) * 0.02, 0.05)
    assert rules.global_pattern_confidence(_pattern(user_count=3, match_count=10)) == pytest.approx(expected)
    assert rules.global_pattern_confidence(_pattern(user_count=50, match_count=10_000)) == pytest.approx(0.90)


def test_pattern_matching_modes():
    assert rules.pattern_matches(_pattern(), "acme widgets order")
    assert rules.pattern_matches(_pattern(pattern_type="prefix", pattern="acme"), "acme widgets")
    assert not rules.pattern_matches(_pattern(pattern_type="suffix", pattern="acme"), "acme widgets")
    assert rules.pattern_matches(_pattern(pattern_type="exact", pattern="acme"), "ACME")
    assert not rules.pattern_matches(_pattern(), None)


def test_verification_needs_two_agreeing_users():
    assert not rules.check_verification(_pattern(user_count=1, agreement_count=1))
    assert not rules.check_verification(_pattern(user_count=5, agreement_count=3))
    pattern = _pattern(user_count=2, agreement_count=2)
    assert rules.check_verification(pattern)
    assert pattern.is_verified and pattern.verified_at is not None


@pytest.mark.asyncio
async def test_record_global_pattern_counts_distinct_users(db, user):
    business = (await db.execute(select(Category).where(Category.slug == "business"))).scalar_one()

    first = await rules.record_global_pattern(db, "Acme Widgets", business.id, user_id=1)
    again = await rules.record_global_pattern(db, "acme widgets", business.id, user_id=1)
    assert again.id == first.id
    assert again.occurrence_count == 2
    assert again.user_count == 1
    assert not again.is_verified

    other = await rules.record_global_pattern(db, "acme widgets", business.id, user_id=2)
    assert other.user_count == 2
    assert other.agreement_count == 2
    assert other.user_ids == [1, 2]
    assert other.is_verified

    assert await rules.record_global_pattern(db, "ab", business.id, user_id=1) is None


@pytest.mark.asyncio
async def test_record_disagreement_touches_other_categories_only(db, user):
    slugs = {c.slug: c for c in (await db.execute(select(Category))).scalars().all()}
    row = await rules.record_global_pattern(db, "acme widgets", slugs["business"].id, user_id=1)

    assert await rules.record_disagreement(db, "acme widgets", slugs["shopping"].id, user_id=2) == 1
    assert row.occurrence_count == 2
    assert row.user_count == 1
    # the same user disagreeing with themselves is not counted
    assert await rules.record_disagreement(db, "acme widgets", slugs["shopping"].id, user_id=1) == 0


@pytest.mark.asyncio
async def test_create_rule_from_feedback_uses_first_three_words(db, user):
    food = (await db.execute(select(Category).where(Category.slug == "food"))).scalar_one()
    tx = await add_transaction(db, user.id, "POS 4567 STARBUCKS COFFEE", 250)

    rule = await rules.create_rule_from_feedback(db, user.id, tx, food.id)
    assert rule.pattern == "starbucks pos 4567"
    assert rule.source == "feedback"
    assert rule.match_field == "normalized"
    assert rule.source_transaction_id == tx.id

    # same pattern again updates the existing rule
    same = await rules.create_rule_from_feedback(db, user.id, tx, food.id)
    assert same.id == rule.id


@pytest.mark.asyncio
async def test_upsert_labeled_example_is_keyed_by_normalized_description(db, user):
    food = (await db.execute(select(Category).where(Category.slug == "food"))).scalar_one()
    tx = await add_transaction(db, user.id, "POS 4567 STARBUCKS COFFEE", 250)

    example = await rules.upsert_labeled_example(db, user.id, tx, food.id)
    assert example.normalized_description == "starbucks pos 4567 coffee"
    assert example.amount == 250

    found = await rules.find_labeled_example(db, user.id, "starbucks pos 4567 coffee")
    assert found.id == example.id
