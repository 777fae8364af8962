"""LLM fallback for transactions that rules and embeddings could not place.

Uses the chat completions API in JSON mode. The reply names a category
slug (unknown slugs fall back to ``other``), an optional subcategory and
tx_kind, a confidence (clamped to 0.5 to 0.9) and a short explanation.
Failures are logged and yield no result so categorisation can continue.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import openai

from ledgerly.core.config import settings
from ledgerly.models.enums import CategorizationMethod, TxKind
from ledgerly.services.ml.category_cache import CategoryCache, category_cache
from ledgerly.services.ml.clients import get_openai_client, openai_configured, with_rate_limit_retry
from ledgerly.services.ml.normalization import normalize
from ledgerly.services.ml.rule_engine import CategorizationResult, tx_kind_for

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
TEMPERATURE = 0.1
MIN_CONFIDENCE = 0.5
MAX_CONFIDENCE = 0.9
DEFAULT_CONFIDENCE = 0.7
FALLBACK_CATEGORY = "other"

SYSTEM_PROMPT = """You are a financial transaction categorizer for Indian bank statements.
Categorize each transaction into the correct category AND subcategory.

Available categories and subcategories:
{categories}

Rules:
1. Distinguish transfers:
   - transfer-self: own account, credit card bill payment, savings to current
   - transfer-p2p: person-to-person (UPI to individuals, NEFT to friends/family)
   - transfer-wallet: Paytm/PhonePe/GPay wallet loads
2. UPI payments to merchants (Zomato, Swiggy, Amazon) are NOT transfers; categorize by merchant type.
3. EMI payments and loan repayments are "emi".
4. Salary credits and payroll are "salary" with subcategory "salary-monthly".
5. Dividends and interest are "salary" with subcategory "salary-investment".
6. If unsure, use "other".

Respond ONLY with JSON:
{{"category": "category-slug", "subcategory": "subcategory-slug", "tx_kind": "{tx_kinds}", "counterparty": "name or null", "confidence": 0.0-1.0, "explanation": "brief reason"}}"""

USER_PROMPT = """Categorize this transaction:

Description: {description}
Normalized: {normalized}
Amount: ₹{amount}
Type: {transaction_type}
Date: {date}"""

BATCH_PROMPT = """Categorize these Indian bank transactions.

Transactions:
{transactions}

Available categories: {slugs}

Respond with a JSON object {{"results": [{{"id": transaction_id, "category": "slug", "subcategory": "slug", "tx_kind": "kind", "confidence": 0.0-1.0, "explanation": "reason"}}, ...]}}"""


def _clamp(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        confidence = DEFAULT_CONFIDENCE
    return max(MIN_CONFIDENCE, min(confidence, MAX_CONFIDENCE))


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).lower().strip()
    return text or None


class LlmService:
    def __init__(self, cache: Optional[CategoryCache] = None, client=None):
        self.cache = cache or category_cache
        self._client = client
        self.model = settings.OPENAI_CHAT_MODEL

    @property
    def client(self):
        return self._client or get_openai_client()

    @property
    def enabled(self) -> bool:
        return self._client is not None or openai_configured()

    def category_listing(self) -> str:
        blocks = []
        for category in self.cache.all():
            subs = "\n".join(f"  - {s.slug}: {s.name}" for s in self.cache.subcategories_for(category.id))
            blocks.append(f"{category.slug} ({category.name}):\n{subs}" if subs else f"{category.slug} ({category.name})")
        return "\n\n".join(blocks)

    async def _chat(self, system: str, user: str, max_tokens: int) -> Optional[str]:
        response = await with_rate_limit_retry(
            lambda: self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "system", "content": system}, {"role": "user", "content": user}],
                response_format={"type": "json_object"},
                temperature=TEMPERATURE,
                max_tokens=max_tokens,
            ),
            label="llm categorization",
        )
        return response.choices[0].message.content

    async def categorize(self, transaction) -> Optional[CategorizationResult]:
        if not self.enabled:
            return None
        normalized = normalize(transaction.description or transaction.original_description)
        if not normalized:
            return None

        system = SYSTEM_PROMPT.format(
            categories=self.category_listing(), tx_kinds="|".join(k.value for k in TxKind)
        )
        user = USER_PROMPT.format(
            description=transaction.description,
            normalized=normalized,
            amount=transaction.amount,
            transaction_type=transaction.transaction_type,
            date=transaction.transaction_date,
        )
        try:
            content = await self._chat(system, user, max_tokens=200)
        except openai.OpenAIError as exc:
            logger.error("LLM categorization failed for transaction %s: %s", transaction.id, exc)
            return None
        return self.parse_response(content, transaction)

    def parse_response(self, content: Optional[str], transaction) -> Optional[CategorizationResult]:
        if not content:
            return None
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.error("LLM returned invalid JSON: %s", content[:200])
            return None
        if not isinstance(data, dict) or not data.get("category"):
            return None
        return self._build(data, transaction)

    def _build(self, data: Dict[str, Any], transaction) -> Optional[CategorizationResult]:
        category = self.cache.find_by_slug(_clean(data.get("category"))) or self.cache.find_by_slug(FALLBACK_CATEGORY)
        if category is None:
            return None
        subcategory = self.cache.resolve_subcategory(category.id, _clean(data.get("subcategory")))
        tx_kind = _clean(data.get("tx_kind"))
        if tx_kind not in {k.value for k in TxKind}:
            tx_kind = tx_kind_for(category.slug, getattr(transaction, "transaction_type", None))
        counterparty = data.get("counterparty")
        return CategorizationResult(
            category=category,
            subcategory=subcategory or self.cache.default_subcategory(category.id),
            tx_kind=tx_kind,
            counterparty_name=str(counterparty).strip() if counterparty else None,
            confidence=_clamp(data.get("confidence", DEFAULT_CONFIDENCE)),
            method=CategorizationMethod.LLM.value,
            explanation=data.get("explanation") or f"AI categorized as {category.name}",
        )

    async def categorize_batch(self, transactions: Iterable) -> Dict[int, CategorizationResult]:
        """Categorise ``BATCH_SIZE`` transactions per request."""
        items = list(transactions)
        if not items or not self.enabled:
            return {}
        results: Dict[int, CategorizationResult] = {}
        for start in range(0, len(items), BATCH_SIZE):
            chunk = items[start : start + BATCH_SIZE]
            results.update(await self._process_batch(chunk))
        return results

    async def _process_batch(self, chunk: List) -> Dict[int, CategorizationResult]:
        lines = []
        for i, tx in enumerate(chunk, start=1):
            normalized = normalize(tx.description or tx.original_description)
            lines.append(
                f"{i}. [ID:{tx.id}] {tx.description} | Normalized: {normalized} | ₹{tx.amount} | {tx.transaction_type}"
            )
        prompt = BATCH_PROMPT.format(
            transactions="\n".join(lines), slugs=", ".join(c.slug for c in self.cache.all())
        )
        try:
            content = await self._chat(
                "You are a financial transaction categorizer. Respond only with valid JSON.",
                prompt,
                max_tokens=120 * len(chunk),
            )
        except openai.OpenAIError as exc:
            logger.error("LLM batch categorization failed: %s", exc)
            return {}
        return self.parse_batch_response(content, chunk)

    def parse_batch_response(self, content: Optional[str], chunk: List) -> Dict[int, CategorizationResult]:
        if not content:
            return {}
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            logger.error("LLM batch returned invalid JSON: %s", content[:200])
            return {}
        if isinstance(parsed, dict):
            parsed = parsed.get("results") or parsed.get("transactions") or []
        by_id = {tx.id: tx for tx in chunk}
        results: Dict[int, CategorizationResult] = {}
        for item in parsed if isinstance(parsed, list) else []:
            try:
                tx_id = int(item.get("id"))
            except (TypeError, ValueError, AttributeError):
                continue
            tx = by_id.get(tx_id)
            if tx is None or not item.get("category"):
                continue
            result = self._build(item, tx)
            if result:
                results[tx_id] = result
        return results
