"""Learned categorisation knowledge: user rules, labeled examples and
crowd-sourced global patterns.

The ORM rows in :mod:`ledgerly.models.tables` are plain data; the matching
and bookkeeping logic lives here as module functions so the rule engine,
feedback loop and LLM auto-learning share one implementation. Functions
that write only ``add``/``flush``; committing is the caller's job.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.models.enums import GlobalPatternType, MatchField, PatternType, RuleSource
from ledgerly.models.tables import GlobalPattern, LabeledExample, Transaction, UserRule
from ledgerly.services.ml.normalization import normalize
from ledgerly.utils.helpers import utcnow

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE = 0.98
KEYWORD_BASE_CONFIDENCE = 0.85
KEYWORD_MAX_BOOST = 0.10
REGEX_CONFIDENCE = 0.90

MIN_GLOBAL_PATTERN_LENGTH = 3
MIN_USERS_FOR_VERIFICATION = 2
MIN_AGREEMENT_RATE = 0.8


# User rules ------------------------------------------------------------


def rule_confidence(rule: UserRule, text: Optional[str]) -> Optional[float]:
    """Confidence with which ``rule`` matches ``text``, or ``None``."""
    if not rule.is_active:
        return None
    # Amount ranges are stored but never matched on text.
    if rule.match_field == MatchField.AMOUNT_RANGE.value:
        return None

    candidate = (text or "").lower().strip()
    if not candidate:
        return None

    pattern = (rule.pattern or "").lower()
    if rule.pattern_type == PatternType.EXACT.value:
        return EXACT_CONFIDENCE if candidate == pattern else None
    if rule.pattern_type == PatternType.KEYWORD.value:
        words = pattern.split()
        if not words or not all(re.search(rf"\b{re.escape(w)}\b", candidate) for w in words):
            return None
        boost = min((rule.match_count or 0) * 0.01, KEYWORD_MAX_BOOST)
        return min(KEYWORD_BASE_CONFIDENCE + boost, EXACT_CONFIDENCE)
    if rule.pattern_type == PatternType.REGEX.value:
        try:
            return REGEX_CONFIDENCE if re.search(rule.pattern, candidate, re.I) else None
        except re.error:
            return None
    return None


def rule_text(rule: UserRule, description: Optional[str], normalized: Optional[str] = None) -> str:
    """The text a rule is evaluated against, depending on its match field."""
    if rule.match_field == MatchField.NORMALIZED.value:
        return normalized if normalized is not None else normalize(description)
    return description or ""


def record_match(row) -> None:
    """Bump ``match_count`` and ``last_matched_at`` on a rule or pattern."""
    row.match_count = (row.match_count or 0) + 1
    row.last_matched_at = utcnow()


async def active_rules_for_user(db: AsyncSession, user_id: int) -> list[UserRule]:
    result = await db.execute(
        select(UserRule)
        .where(UserRule.user_id == user_id, UserRule.is_active.is_(True))
        .order_by(UserRule.priority.desc(), UserRule.match_count.desc(), UserRule.id)
    )
    return list(result.scalars().unique().all())


async def create_rule_from_feedback(
    db: AsyncSession,
    user_id: int,
    transaction: Transaction,
    category_id: int,
    subcategory_id: Optional[int] = None,
) -> Optional[UserRule]:
    """Create or update a keyword rule from the first three normalised words."""
    normalized = normalize(transaction.description or transaction.original_description or "")
    pattern = " ".join(normalized.split()[:3]).lower().strip()
    if not pattern:
        return None

    rule = (
        await db.execute(select(UserRule).where(UserRule.user_id == user_id, UserRule.pattern == pattern))
    ).scalars().first()
    if rule is None:
        rule = UserRule(user_id=user_id, workspace_id=transaction.workspace_id, pattern=pattern, match_count=0)
        db.add(rule)
    rule.category_id = category_id
    rule.subcategory_id = subcategory_id
    rule.pattern_type = PatternType.KEYWORD.value
    rule.match_field = MatchField.NORMALIZED.value
    rule.source_transaction_id = transaction.id
    rule.source = RuleSource.FEEDBACK.value
    rule.is_active = True
    await db.flush()
    logger.info("Feedback rule %r -> category %s for user %s", pattern, category_id, user_id)
    return rule


# Labeled examples ------------------------------------------------------


async def find_labeled_example(db: AsyncSession, user_id: int, normalized: str) -> Optional[LabeledExample]:
    if not normalized:
        return None
    return (
        await db.execute(
            select(LabeledExample).where(
                LabeledExample.user_id == user_id,
                LabeledExample.normalized_description == normalized,
            )
        )
    ).scalars().first()


async def upsert_labeled_example(
    db: AsyncSession,
    user_id: int,
    transaction: Transaction,
    category_id: int,
    subcategory_id: Optional[int] = None,
    tx_kind: Optional[str] = None,
    source: str = "user_feedback",
) -> LabeledExample:
    description = transaction.description or transaction.original_description or ""
    normalized = normalize(description)
    example = await find_labeled_example(db, user_id, normalized)
    if example is None:
        example = LabeledExample(user_id=user_id, normalized_description=normalized)
        db.add(example)
    example.category_id = category_id
    example.subcategory_id = subcategory_id
    example.transaction_id = transaction.id
    example.description = description
    example.amount = transaction.amount
    example.transaction_type = transaction.transaction_type
    example.tx_kind = tx_kind or transaction.tx_kind
    example.source = source
    if transaction.embedding:
        example.embedding = list(transaction.embedding)
    await db.flush()
    return example


# Global patterns -------------------------------------------------------


def pattern_matches(pattern: GlobalPattern, text: Optional[str]) -> bool:
    if not text:
        return False
    text = text.lower()
    if pattern.pattern_type == GlobalPatternType.EXACT.value:
        return text == pattern.pattern
    if pattern.pattern_type == GlobalPatternType.PREFIX.value:
        return text.startswith(pattern.pattern)
    if pattern.pattern_type == GlobalPatternType.SUFFIX.value:
        return text.endswith(pattern.pattern)
    return pattern.pattern in text


def global_pattern_confidence(pattern: GlobalPattern) -> float:
    user_boost = min((pattern.user_count or 0) * 0.02, 0.10)
    match_boost = min(math.log((pattern.match_count or 0) + 1) * 0.02, 0.05)
    return min(0.75 + user_boost + match_boost, 0.90)


def check_verification(pattern: GlobalPattern) -> bool:
    """Verify the pattern once enough distinct users agree; returns ``is_verified``."""
    if pattern.is_verified:
        return True
    if (pattern.user_count or 0) < MIN_USERS_FOR_VERIFICATION:
        return False
    rate = (pattern.agreement_count or 0) / pattern.user_count
    if rate < MIN_AGREEMENT_RATE:
        return False
    pattern.is_verified = True
    pattern.verified_at = utcnow()
    logger.info(
        "Global pattern %r verified for category %s (%d users, %d%% agreement)",
        pattern.pattern,
        pattern.category_id,
        pattern.user_count,
        round(rate * 100),
    )
    return True


async def record_global_pattern(
    db: AsyncSession,
    pattern: Optional[str],
    category_id: int,
    user_id: int,
    source: str = RuleSource.LLM_AUTO.value,
) -> Optional[GlobalPattern]:
    """Count one more sighting of ``pattern`` -> ``category_id`` by ``user_id``."""
    text = (pattern or "").lower().strip()
    if len(text) < MIN_GLOBAL_PATTERN_LENGTH:
        return None

    row = (
        await db.execute(
            select(GlobalPattern).where(GlobalPattern.pattern == text, GlobalPattern.category_id == category_id)
        )
    ).scalars().first()
    if row is None:
        row = GlobalPattern(
            pattern=text,
            category_id=category_id,
            source=source,
            user_ids=[user_id],
            occurrence_count=1,
            user_count=1,
            agreement_count=1,
            match_count=0,
            is_verified=False,
        )
        try:
            async with db.begin_nested():
                db.add(row)
        except IntegrityError:
            # Another worker created it first.
            return (
                await db.execute(
                    select(GlobalPattern).where(
                        GlobalPattern.pattern == text, GlobalPattern.category_id == category_id
                    )
                )
            ).scalars().first()
    else:
        row.occurrence_count = (row.occurrence_count or 0) + 1
        user_ids = list(row.user_ids or [])
        if user_id not in user_ids:
            row.user_ids = user_ids + [user_id]
            row.user_count = (row.user_count or 0) + 1
            row.agreement_count = (row.agreement_count or 0) + 1
    check_verification(row)
    await db.flush()
    return row


async def record_disagreement(
    db: AsyncSession, pattern: Optional[str], suggested_category_id: int, user_id: int
) -> int:
    """Count a sighting against every other category recorded for ``pattern``."""
    text = (pattern or "").lower().strip()
    if not text:
        return 0
    rows = (
        await db.execute(
            select(GlobalPattern).where(
                GlobalPattern.pattern == text, GlobalPattern.category_id != suggested_category_id
            )
        )
    ).scalars().all()
    touched = 0
    for row in rows:
        if user_id in (row.user_ids or []):
            continue
        row.occurrence_count = (row.occurrence_count or 0) + 1
        check_verification(row)
        touched += 1
    if touched:
        await db.flush()
    return touched


async def verified_global_patterns(db: AsyncSession) -> list[GlobalPattern]:
    result = await db.execute(
        select(GlobalPattern).where(GlobalPattern.is_verified.is_(True)).order_by(GlobalPattern.match_count.desc())
    )
    return list(result.scalars().unique().all())
