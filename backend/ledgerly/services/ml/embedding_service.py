"""Embedding generation and similarity-based categorisation.

Vectors come from OpenAI (``OPENAI_EMBEDDING_MODEL``) for the normalised
description and are stored as JSON float arrays on the transaction (and
on labeled examples). Similarity search loads the user's vectors once into
row-normalised numpy matrices, so a lookup is a single matrix product.

Lookup order: the user's labeled examples first (confirmed feedback),
then the user's previously categorised transactions.
"""

from __future__ import annotations

import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.config import settings
from ledgerly.models.enums import CategorizationMethod
from ledgerly.models.tables import LabeledExample, Transaction
from ledgerly.services.ml.category_cache import CategoryCache, category_cache
from ledgerly.services.ml.clients import get_openai_client, openai_configured, with_rate_limit_retry
from ledgerly.services.ml.normalization import normalize
from ledgerly.services.ml.rule_engine import CategorizationResult, tx_kind_for
from ledgerly.utils.helpers import utcnow

logger = logging.getLogger(__name__)

MIN_SIMILARITY = 0.75
MAX_RESULTS = 5
BATCH_SIZE = 50


def normalize_rows(matrix: NDArray[np.float64]) -> NDArray[np.float64]:
    """Scale rows to unit length; all-zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    return np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not len(a) or not len(b) or len(a) != len(b):
        return 0.0
    pair = normalize_rows(np.asarray([a, b], dtype=np.float64))
    return float(pair[0] @ pair[1])


@dataclass
class VectorPool:
    """Row ids, per-row payloads and the unit-length embedding matrix."""

    ids: NDArray[np.int64]
    payloads: List[Any]
    matrix: NDArray[np.float64]
    dim: int = 0

    @classmethod
    def from_rows(cls, rows: Sequence[Tuple[int, Any, Optional[Sequence[float]]]]) -> "VectorPool":
        """Build from ``(id, payload, vector)``; rows whose width differs from the first are dropped."""
        kept = [r for r in rows if r[2] is not None and len(r[2])]
        dim = len(kept[0][2]) if kept else 0
        kept = [r for r in kept if len(r[2]) == dim]
        if not kept:
            return cls(np.empty(0, dtype=np.int64), [], np.empty((0, 0)), 0)
        matrix = normalize_rows(np.asarray([r[2] for r in kept], dtype=np.float64))
        return cls(np.asarray([r[0] for r in kept], dtype=np.int64), [r[1] for r in kept], matrix, dim)

    def __len__(self) -> int:
        return len(self.payloads)

    def similarities(self, embedding: Sequence[float]) -> Optional[NDArray[np.float64]]:
        if not len(self) or len(embedding) != self.dim:
            return None
        query = normalize_rows(np.asarray(embedding, dtype=np.float64))
        return self.matrix @ query


@dataclass
class Neighbour:
    id: int
    category_id: int
    similarity: float
    subcategory_id: Optional[int] = None


def nearest(
    embedding: Sequence[float],
    pool: VectorPool,
    min_similarity: float = MIN_SIMILARITY,
    limit: int = MAX_RESULTS,
    exclude_id: Optional[int] = None,
) -> List[Neighbour]:
    """Top ``limit`` rows at or above the threshold; payloads are ``(category_id, subcategory_id)``."""
    scores = pool.similarities(embedding)
    if scores is None:
        return []
    if exclude_id is not None:
        scores = np.where(pool.ids == exclude_id, -np.inf, scores)
    hits = []
    for idx in np.argsort(-scores, kind="stable")[:limit]:
        if scores[idx] < min_similarity:
            break
        category_id, subcategory_id = pool.payloads[idx]
        hits.append(Neighbour(int(pool.ids[idx]), category_id, float(scores[idx]), subcategory_id))
    return hits


def _best_category(neighbours: List[Neighbour], log_divisor: float) -> Optional[Tuple[int, float, int]]:
    groups: Dict[int, List[Neighbour]] = defaultdict(list)
    for n in neighbours:
        groups[n.category_id].append(n)
    best = None
    best_score = -1.0
    for category_id, members in groups.items():
        avg = sum(m.similarity for m in members) / len(members)
        score = avg * (1 + math.log(len(members) + 1) / log_divisor)
        if score > best_score:
            best, best_score = (category_id, avg, len(members)), score
    return best


class EmbeddingService:
    def __init__(self, db: AsyncSession, cache: Optional[CategoryCache] = None, client=None):
        self.db = db
        self.cache = cache or category_cache
        self._client = client
        self.model = settings.OPENAI_EMBEDDING_MODEL
        self._pools: Dict[int, Tuple[VectorPool, VectorPool]] = {}

    @property
    def client(self):
        return self._client or get_openai_client()

    @property
    def configured(self) -> bool:
        return self._client is not None or openai_configured()

    # Generation --------------------------------------------------------

    async def embed_texts(self, texts: List[str]) -> List[Optional[List[float]]]:
        if not texts:
            return []
        response = await with_rate_limit_retry(
            lambda: self.client.embeddings.create(model=self.model, input=texts),
            label="embeddings",
        )
        vectors: List[Optional[List[float]]] = [None] * len(texts)
        for item in response.data:
            vectors[item.index] = list(item.embedding)
        return vectors

    async def generate_for_transaction(self, transaction: Transaction) -> Optional[List[float]]:
        """Return the stored vector, generating it first when missing."""
        if transaction.embedding:
            return list(transaction.embedding)
        if not self.configured:
            return None
        text = normalize(transaction.description or transaction.original_description)
        if not text:
            transaction.embedding_generated_at = utcnow()
            return None
        vector = (await self.embed_texts([text]))[0]
        if vector:
            transaction.embedding = vector
            transaction.embedding_generated_at = utcnow()
        return vector

    async def generate_for_example(self, example: LabeledExample) -> Optional[List[float]]:
        if example.embedding:
            return list(example.embedding)
        if not self.configured or not example.normalized_description:
            return None
        vector = (await self.embed_texts([example.normalized_description]))[0]
        if vector:
            example.embedding = vector
        return vector

    async def generate_for_examples(self, example_ids: List[int]) -> int:
        """Embed labeled examples that have no vector yet; returns how many were embedded."""
        if not example_ids or not self.configured:
            return 0
        examples = (
            await self.db.execute(
                select(LabeledExample).where(
                    LabeledExample.id.in_(example_ids), LabeledExample.embedding.is_(None)
                )
            )
        ).scalars().unique().all()
        pending = [ex for ex in examples if ex.normalized_description]
        if not pending:
            return 0
        vectors = await self.embed_texts([ex.normalized_description for ex in pending])
        count = 0
        for example, vector in zip(pending, vectors):
            if vector:
                example.embedding = vector
                count += 1
        await self.db.commit()
        return count

    async def generate_batch(
        self, user_id: Optional[int] = None, limit: int = 500, transaction_ids: Optional[List[int]] = None
    ) -> Dict[str, object]:
        """Embed transactions that were never embedded, ``BATCH_SIZE`` per API call."""
        started = time.monotonic()
        if not self.configured:
            return {"success": False, "generated": 0, "failed": 0, "errors": ["OpenAI API key not configured"]}

        query = select(Transaction).where(Transaction.embedding_generated_at.is_(None))
        if user_id is not None:
            query = query.where(Transaction.user_id == user_id)
        if transaction_ids:
            query = query.where(Transaction.id.in_(transaction_ids))
        query = query.order_by(Transaction.created_at.desc()).limit(limit)
        transactions = list((await self.db.execute(query)).scalars().unique().all())

        generated = failed = 0
        errors: List[str] = []
        for start in range(0, len(transactions), BATCH_SIZE):
            chunk = transactions[start : start + BATCH_SIZE]
            texts = [(tx, normalize(tx.description or tx.original_description)) for tx in chunk]
            blank = [tx for tx, text in texts if not text]
            for tx in blank:
                tx.embedding_generated_at = utcnow()
            generated += len(blank)
            valid = [(tx, text) for tx, text in texts if text]
            if not valid:
                continue
            vectors = await self.embed_texts([text for _, text in valid])
            for (tx, _), vector in zip(valid, vectors):
                if vector:
                    tx.embedding = vector
                    tx.embedding_generated_at = utcnow()
                    generated += 1
                else:
                    failed += 1
                    errors.append(f"No embedding returned for transaction {tx.id}")
            await self.db.flush()
            logger.info("Embeddings progress %d/%d", generated + failed, len(transactions))

        await self.db.commit()
        return {
            "success": not errors,
            "generated": generated,
            "failed": failed,
            "errors": errors,
            "duration_seconds": round(time.monotonic() - started, 2),
        }

    # Similarity --------------------------------------------------------

    async def _pools_for(self, user_id: int) -> Tuple[VectorPool, VectorPool]:
        if user_id not in self._pools:
            examples = (
                await self.db.execute(
                    select(
                        LabeledExample.id,
                        LabeledExample.category_id,
                        LabeledExample.subcategory_id,
                        LabeledExample.embedding,
                    ).where(LabeledExample.user_id == user_id, LabeledExample.embedding.is_not(None))
                )
            ).all()
            transactions = (
                await self.db.execute(
                    select(
                        Transaction.id,
                        Transaction.category_id,
                        Transaction.ai_category_id,
                        Transaction.embedding,
                    ).where(
                        Transaction.user_id == user_id,
                        Transaction.embedding.is_not(None),
                        or_(Transaction.category_id.is_not(None), Transaction.ai_category_id.is_not(None)),
                    )
                )
            ).all()
            self._pools[user_id] = (
                VectorPool.from_rows([(r.id, (r.category_id, r.subcategory_id), r.embedding) for r in examples]),
                VectorPool.from_rows(
                    [(r.id, (r.category_id or r.ai_category_id, None), r.embedding) for r in transactions]
                ),
            )
        return self._pools[user_id]

    def reset_pools(self) -> None:
        self._pools.clear()

    async def categorize(self, transaction: Transaction) -> Optional[CategorizationResult]:
        """Categorise from stored vectors only; never calls the API."""
        embedding = transaction.embedding
        if not embedding:
            return None
        await self.cache.ensure_loaded(self.db)
        examples, transactions = await self._pools_for(transaction.user_id)

        result = self._from_examples(nearest(embedding, examples), transaction)
        if result and result.confidence >= MIN_SIMILARITY:
            return result
        return self._from_transactions(nearest(embedding, transactions, exclude_id=transaction.id), transaction)

    def _from_examples(self, neighbours: List[Neighbour], transaction) -> Optional[CategorizationResult]:
        best = _best_category(neighbours, log_divisor=8)
        if best is None:
            return None
        category_id, avg, count = best
        category = self.cache.find_by_id(category_id)
        if category is None or avg < MIN_SIMILARITY:
            return None
        top = next(n for n in neighbours if n.category_id == category_id)
        subcategory = next(
            (s for s in self.cache.subcategories_for(category_id) if s.id == top.subcategory_id), None
        )
        return CategorizationResult(
            category=category,
            subcategory=subcategory or self.cache.default_subcategory(category_id),
            tx_kind=tx_kind_for(category.slug, transaction.transaction_type),
            confidence=min(avg * 0.95 + count * 0.02, 0.98),
            method=CategorizationMethod.EMBEDDING_FEEDBACK.value,
            explanation=f"Matched {count} user-labeled example(s) with {avg * 100:.1f}% similarity",
        )

    def _from_transactions(self, neighbours: List[Neighbour], transaction) -> Optional[CategorizationResult]:
        best = _best_category(neighbours, log_divisor=10)
        if best is None:
            return None
        category_id, avg, count = best
        category = self.cache.find_by_id(category_id)
        if category is None or avg < MIN_SIMILARITY:
            return None
        return CategorizationResult(
            category=category,
            subcategory=self.cache.default_subcategory(category_id),
            tx_kind=tx_kind_for(category.slug, transaction.transaction_type),
            confidence=min(avg * 0.9 + count * 0.02, 0.95),
            method=CategorizationMethod.EMBEDDING.value,
            explanation=f"Matched {count} similar transaction(s) with {avg * 100:.1f}% similarity",
        )

    async def similar_uncategorized(
        self, transaction: Transaction, max_distance: float, limit: int
    ) -> List[Transaction]:
        """The user's uncategorised transactions within ``max_distance`` cosine distance."""
        if not transaction.embedding:
            return []
        candidates = (
            await self.db.execute(
                select(Transaction).where(
                    Transaction.user_id == transaction.user_id,
                    Transaction.id != transaction.id,
                    Transaction.category_id.is_(None),
                    Transaction.embedding.is_not(None),
                )
            )
        ).scalars().unique().all()
        pool = VectorPool.from_rows([(c.id, c, c.embedding) for c in candidates])
        scores = pool.similarities(transaction.embedding)
        if scores is None:
            return []
        distances = 1.0 - scores
        order = [i for i in np.argsort(distances, kind="stable") if distances[i] < max_distance]
        return [pool.payloads[i] for i in order[:limit]]


async def mark_embeddings_stale(db: AsyncSession, transaction_ids: List[int]) -> None:
    """Clear vectors so the next batch regenerates them (used after description edits)."""
    if transaction_ids:
        await db.execute(
            update(Transaction)
            .where(Transaction.id.in_(transaction_ids))
            .values(embedding=None, embedding_generated_at=None)
        )
