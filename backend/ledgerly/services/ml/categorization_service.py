"""Categorisation triage: rules, then embeddings, then the LLM.

1. :class:`RuleEngine` (transfer classifier, user rules, system rules,
   global patterns) accepted at confidence ≥ 0.7.
2. Similarity over stored embeddings, accepted at ≥ 0.75. Vectors are
   never generated inline; a transaction without one is flagged
   ``needs_embedding`` and queued for the embedding actor.
3. The LLM, only while the best confidence is < 0.6 and OpenAI is
   configured. Confident LLM answers are fed to auto-learning.

The highest-confidence candidate wins and is written to the transaction.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core import dispatch
from ledgerly.core.observability import sentry_metric_inc
from ledgerly.models.enums import CategorizationMethod, CategorizationStatus
from ledgerly.models.tables import Transaction
from ledgerly.services.ml.auto_learn import LlmAutoLearnService
from ledgerly.services.ml.category_cache import CategoryCache, category_cache
from ledgerly.services.ml.embedding_service import EmbeddingService
from ledgerly.services.ml.llm_service import LlmService
from ledgerly.services.ml.normalization import normalize
from ledgerly.services.ml.rule_engine import CategorizationResult, RuleEngine, no_match

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.7
EMBEDDING_THRESHOLD = 0.75
LLM_THRESHOLD = 0.6


def _better(current: Optional[CategorizationResult], candidate: Optional[CategorizationResult]):
    if candidate is None or not candidate.matched:
        return current
    if current is None or candidate.confidence > current.confidence:
        return candidate
    return current


class CategorizationService:
    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CategoryCache] = None,
        embeddings: Optional[EmbeddingService] = None,
        llm: Optional[LlmService] = None,
        enable_embeddings: bool = True,
        enable_llm: bool = True,
        auto_learn: bool = True,
        queue_embeddings: bool = True,
    ):
        self.db = db
        self.cache = cache or category_cache
        self.embeddings = embeddings or EmbeddingService(db, cache=self.cache)
        self.llm = llm or LlmService(cache=self.cache)
        self.enable_embeddings = enable_embeddings
        self.enable_llm = enable_llm
        self.auto_learn = auto_learn
        self.queue_embeddings = queue_embeddings
        self._engines: Dict[int, RuleEngine] = {}

    async def _engine_for(self, user_id: int) -> RuleEngine:
        if user_id not in self._engines:
            self._engines[user_id] = await RuleEngine.load(self.db, user_id, cache=self.cache)
        return self._engines[user_id]

    async def categorize(self, transaction: Transaction) -> CategorizationResult:
        results = await self.categorize_batch([transaction])
        return results[0][1]

    async def categorize_ids(self, transaction_ids: Sequence[int], user_id: Optional[int] = None):
        query = select(Transaction).where(Transaction.id.in_(list(transaction_ids)))
        if user_id is not None:
            query = query.where(Transaction.user_id == user_id)
        transactions = list((await self.db.execute(query.order_by(Transaction.id))).scalars().unique().all())
        return await self.categorize_batch(transactions)

    async def categorize_batch(
        self, transactions: Iterable[Transaction]
    ) -> List[Tuple[Transaction, CategorizationResult]]:
        items = list(transactions)
        if not items:
            return []
        await self.cache.ensure_loaded(self.db)
        for tx in items:
            tx.categorization_status = CategorizationStatus.PROCESSING.value
        await self.db.flush()

        best: Dict[int, Optional[CategorizationResult]] = {}
        needs_embedding: Dict[int, bool] = {}
        for tx in items:
            engine = await self._engine_for(tx.user_id)
            result = engine.categorize(tx)
            current = result if result.matched and result.confidence >= CONFIDENCE_THRESHOLD else None

            if self.enable_embeddings and (current is None or current.confidence < CONFIDENCE_THRESHOLD):
                if tx.embedding:
                    similar = await self.embeddings.categorize(tx)
                    if similar and similar.confidence >= EMBEDDING_THRESHOLD:
                        current = _better(current, similar)
                else:
                    needs_embedding[tx.id] = tx.embedding_generated_at is None
            best[tx.id] = current

        llm_results: Dict[int, CategorizationResult] = {}
        pending = [tx for tx in items if best[tx.id] is None or best[tx.id].confidence < LLM_THRESHOLD]
        if self.enable_llm and pending and self.llm.enabled:
            if len(pending) == 1:
                single = await self.llm.categorize(pending[0])
                if single:
                    llm_results[pending[0].id] = single
            else:
                llm_results = await self.llm.categorize_batch(pending)
            logger.info("LLM categorised %d of %d remaining transactions", len(llm_results), len(pending))

        example_ids: List[int] = []
        learner = LlmAutoLearnService(self.db)
        outcome: List[Tuple[Transaction, CategorizationResult]] = []
        counts: Dict[str, int] = defaultdict(int)
        for tx in items:
            llm_result = llm_results.get(tx.id)
            result = _better(best[tx.id], llm_result)
            if result is not None and result is llm_result and self.auto_learn:
                learned = await learner.learn(tx, llm_result)
                if learned.get("needs_example_embedding") and learned.get("example_id"):
                    example_ids.append(learned["example_id"])
            flagged = needs_embedding.get(tx.id, False)
            if result is None:
                result = no_match("No categorization method succeeded")
            result.needs_embedding = flagged
            self.save_result(tx, result)
            counts[result.method] += 1
            outcome.append((tx, result))

        await self.db.commit()

        embed_ids = [tx.id for tx, result in outcome if result.needs_embedding]
        if self.queue_embeddings and (embed_ids or example_ids):
            dispatch.enqueue("generate_embeddings", None, embed_ids or None, example_ids or None)
        for method, count in counts.items():
            sentry_metric_inc("categorization.result", count, tags={"method": method})
        logger.info(
            "Categorised %d/%d transactions (%s)",
            sum(1 for _, r in outcome if r.matched),
            len(outcome),
            ", ".join(f"{k}={v}" for k, v in sorted(counts.items())),
        )
        return outcome

    def save_result(self, transaction: Transaction, result: CategorizationResult) -> None:
        transaction.categorization_status = CategorizationStatus.COMPLETED.value
        if not result.matched:
            if result.needs_embedding:
                transaction.meta = {**(transaction.meta or {}), "needs_embedding": True}
            return

        transaction.ai_category_id = result.category.id
        if transaction.category_id is None and not transaction.is_reviewed:
            transaction.category_id = result.category.id
            transaction.subcategory_id = result.subcategory.id if result.subcategory else None
        transaction.confidence = round(result.confidence, 4)
        transaction.tx_kind = result.tx_kind
        if result.counterparty_name:
            transaction.counterparty_name = result.counterparty_name
        transaction.meta = {
            **(transaction.meta or {}),
            "categorization_method": result.method,
            "categorization_explanation": result.explanation,
            "normalized_description": normalize(transaction.description or transaction.original_description),
            "needs_embedding": result.needs_embedding,
        }
        if result.method == CategorizationMethod.TRANSFER.value:
            transaction.meta = {**transaction.meta, "transfer_detected": True}
