"""User corrections: the learning half of categorisation.

A correction updates the transaction and leaves three traces behind: a
``feedback`` user rule for fast keyword matching, a labeled example for
similarity search, and a global pattern sighting (plus a disagreement
against the AI's category when the user overrode it).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core import dispatch
from ledgerly.models.enums import RuleSource
from ledgerly.models.tables import Category, Transaction
from ledgerly.services.categories import CategoryService
from ledgerly.services.ml import rules as learned
from ledgerly.services.ml.auto_learn import learnable_pattern
from ledgerly.services.ml.embedding_service import EmbeddingService
from ledgerly.services.ml.normalization import first_words, normalize
from ledgerly.utils.helpers import utcnow, utcnow_iso

logger = logging.getLogger(__name__)

SIMILAR_MAX_DISTANCE = 0.15
SIMILAR_MAX_COUNT = 50


class FeedbackService:
    def __init__(self, db: AsyncSession, embeddings: Optional[EmbeddingService] = None):
        self.db = db
        self.embeddings = embeddings or EmbeddingService(db)

    async def process_correction(
        self,
        transaction: Transaction,
        category_id: int,
        subcategory_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        categories = CategoryService(self.db)
        category: Category = await categories.get(category_id)
        await categories.validate_subcategory(category.id, subcategory_id)

        user_id = transaction.user_id
        previous = transaction.ai_category
        previous_slug = previous.slug if previous else None

        transaction.category_id = category.id
        transaction.subcategory_id = subcategory_id
        transaction.is_reviewed = True
        transaction.meta = {
            **(transaction.meta or {}),
            "user_corrected": True,
            "corrected_at": utcnow_iso(),
            "previous_category": previous_slug,
        }

        rule = await learned.create_rule_from_feedback(self.db, user_id, transaction, category.id, subcategory_id)
        example = None
        if normalize(transaction.description or transaction.original_description):
            example = await learned.upsert_labeled_example(
                self.db, user_id, transaction, category.id, subcategory_id, source="user_feedback"
            )

        pattern = learnable_pattern(transaction.description) or first_words(transaction.description)
        global_pattern = await learned.record_global_pattern(
            self.db, pattern, category.id, user_id, source=RuleSource.FEEDBACK.value
        )
        if previous is not None and previous.id != category.id:
            await learned.record_disagreement(self.db, pattern, category.id, user_id)

        await self.db.commit()
        await self.db.refresh(transaction)

        if example is not None and not example.embedding:
            dispatch.enqueue("generate_embeddings", None, None, [example.id])

        parts = []
        if rule is not None:
            parts.append(f"Created rule '{rule.pattern}'")
        if example is not None:
            parts.append("Saved as labeled example")
        logger.info(
            "Feedback on transaction %s: %s -> %s", transaction.id, previous_slug or "-", category.slug
        )
        return {
            "transaction": transaction,
            "rule": rule,
            "example": example,
            "global_pattern": global_pattern,
            "message": " and ".join(parts) if parts else "Feedback recorded",
        }

    async def apply_to_similar(
        self,
        transaction: Transaction,
        category_id: int,
        subcategory_id: Optional[int] = None,
        max_count: int = SIMILAR_MAX_COUNT,
    ) -> Dict[str, Any]:
        """Copy the correction onto the user's near-identical uncategorised transactions."""
        similar = await self.embeddings.similar_uncategorized(transaction, SIMILAR_MAX_DISTANCE, max_count)
        if not similar:
            return {"updated": 0, "ids": []}
        now = utcnow()
        for tx in similar:
            tx.category_id = category_id
            tx.subcategory_id = subcategory_id
            tx.is_reviewed = False
            tx.updated_at = now
        await self.db.commit()
        ids = [tx.id for tx in similar]
        logger.info("Applied category %s to %d similar transactions", category_id, len(ids))
        return {"updated": len(ids), "ids": ids}
