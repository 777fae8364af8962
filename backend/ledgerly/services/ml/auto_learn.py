"""Turn confident LLM answers into cheaper knowledge.

A categorisation the LLM gives with confidence ≥ 0.85 becomes a low
priority ``llm_auto`` user rule, a labeled example for similarity search
and a global pattern sighting, so the next similar transaction is placed
by rules or embeddings instead of another LLM call.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.models.enums import MatchField, PatternType, RuleSource
from ledgerly.models.tables import Transaction, UserRule
from ledgerly.services.ml import rules as learned
from ledgerly.services.ml.normalization import normalize
from ledgerly.services.ml.rule_engine import CategorizationResult

logger = logging.getLogger(__name__)

MIN_CONFIDENCE_FOR_LEARNING = 0.85
MAX_RULES_PER_CATEGORY = 100
MIN_PATTERN_LENGTH = 5
AUTO_RULE_PRIORITY = -1


def learnable_pattern(description: Optional[str]) -> Optional[str]:
    """First three normalised words of length ≥ 3 that are not all digits."""
    words = [w for w in normalize(description).split() if len(w) >= 3 and not w.isdigit()]
    pattern = " ".join(words[:3])
    if len(pattern) < MIN_PATTERN_LENGTH:
        return None
    return pattern


class LlmAutoLearnService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def learn(self, transaction: Transaction, result: CategorizationResult) -> Dict[str, Any]:
        if result.category is None:
            return {"learned": False, "message": "Category missing"}
        if result.confidence < MIN_CONFIDENCE_FOR_LEARNING:
            return {"learned": False, "message": "Confidence too low"}

        description = transaction.description or transaction.original_description
        pattern = learnable_pattern(description)
        category_id = result.category.id
        subcategory_id = result.subcategory.id if result.subcategory else None

        rule = await self._auto_rule(transaction, pattern, category_id, subcategory_id)
        example = await learned.find_labeled_example(self.db, transaction.user_id, normalize(description))
        if example is None and normalize(description):
            example = await learned.upsert_labeled_example(
                self.db,
                transaction.user_id,
                transaction,
                category_id,
                subcategory_id,
                tx_kind=result.tx_kind,
                source="llm",
            )
        global_pattern = None
        if pattern:
            global_pattern = await learned.record_global_pattern(
                self.db, pattern, category_id, transaction.user_id, source=RuleSource.LLM_AUTO.value
            )

        parts = []
        if rule is not None:
            parts.append(f"Auto-rule '{rule.pattern}'")
        if example is not None:
            parts.append("Labeled example")
        if global_pattern is not None:
            status = "verified" if global_pattern.is_verified else f"{global_pattern.user_count} user(s)"
            parts.append(f"Global pattern ({status})")
        learned_any = bool(parts)
        message = f"Created: {' + '.join(parts)}" if parts else "No artifacts created"
        if learned_any:
            logger.info(
                "Auto-learned from transaction %s -> %s (%d%%): %s",
                transaction.id,
                result.category.slug,
                round(result.confidence * 100),
                message,
            )
        return {
            "learned": learned_any,
            "rule_id": rule.id if rule else None,
            "example_id": example.id if example else None,
            "global_pattern_id": global_pattern.id if global_pattern else None,
            "needs_example_embedding": bool(example is not None and not example.embedding),
            "message": message,
        }

    async def _auto_rule(
        self, transaction: Transaction, pattern: Optional[str], category_id: int, subcategory_id: Optional[int]
    ) -> Optional[UserRule]:
        if not pattern:
            return None
        existing = (
            await self.db.execute(
                select(UserRule).where(UserRule.user_id == transaction.user_id, UserRule.pattern == pattern)
            )
        ).scalars().first()
        if existing is not None:
            return existing

        count = (
            await self.db.execute(
                select(func.count(UserRule.id)).where(
                    UserRule.user_id == transaction.user_id,
                    UserRule.category_id == category_id,
                    UserRule.source == RuleSource.LLM_AUTO.value,
                )
            )
        ).scalar_one()
        if count >= MAX_RULES_PER_CATEGORY:
            logger.debug("Auto-rule limit reached for category %s", category_id)
            return None

        rule = UserRule(
            user_id=transaction.user_id,
            workspace_id=transaction.workspace_id,
            category_id=category_id,
            subcategory_id=subcategory_id,
            pattern=pattern,
            pattern_type=PatternType.KEYWORD.value,
            match_field=MatchField.NORMALIZED.value,
            source=RuleSource.LLM_AUTO.value,
            source_transaction_id=transaction.id,
            is_active=True,
            priority=AUTO_RULE_PRIORITY,
            match_count=0,
        )
        self.db.add(rule)
        await self.db.flush()
        return rule
