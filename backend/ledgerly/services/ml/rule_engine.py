"""Deterministic transaction categorisation.

The engine runs four layers in order and returns the first hit:

1. **Transfer classifier**: self, wallet and person-to-person transfers.
2. **User rules**: the user's own keyword/regex/exact rules, accepted at
   confidence ≥ 0.7.
3. **System rules**: hand-written keyword lists per system category,
   matched on word boundaries against the normalised description.
4. **Global patterns**: verified patterns learned across users.

Rules and patterns are loaded once with :meth:`RuleEngine.load` and the
engine then categorises any number of transactions without further
queries. Recording a match mutates the rule or pattern row; the caller
commits.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.models.enums import CategorizationMethod, TransactionType, TxKind
from ledgerly.models.tables import GlobalPattern, UserRule
from ledgerly.services.ml import rules as learned
from ledgerly.services.ml.category_cache import CachedCategory, CachedSubcategory, CategoryCache, category_cache
from ledgerly.services.ml.normalization import normalize
from ledgerly.services.ml.transfer_classifier import TransferClassifier

logger = logging.getLogger(__name__)

USER_RULE_THRESHOLD = 0.7

SYSTEM_RULES: Dict[str, List[str]] = {
    "food": [
        "zomato", "swiggy", "uber eats", "dominos", "pizza", "mcdonalds", "kfc",
        "starbucks", "dunkin", "cafe", "restaurant", "food", "dining", "hotel", "kitchen",
        "biryani", "burger", "coffee", "tea", "bakery", "sweet", "foodpanda",
        "payzomato", "payswiggy", "starbucksin",
    ],
    "transport": [
        "uber", "ola", "rapido", "metro", "irctc", "railway", "bus", "cab",
        "taxi", "petrol", "diesel", "fuel", "parking", "toll", "fastag",
        "airlines", "flight", "makemytrip", "goibibo", "redbus", "ola money",
        "indigo", "spicejet", "vistara", "air india",
    ],
    "shopping": [
        "amazon", "flipkart", "myntra", "ajio", "nykaa", "meesho", "snapdeal",
        "shopclues", "reliance", "bigbasket", "grofers", "blinkit", "zepto",
        "instamart", "mall", "store", "mart", "retail", "bazaar",
        "grofersindia", "groceries", "bharatpe",
    ],
    "utilities": [
        "electricity", "electric", "bescom", "power", "water", "gas", "lpg",
        "bharat gas", "indane", "hp gas", "airtel", "jio", "vodafone", "vi",
        "bsnl", "internet", "broadband", "wifi", "mobile", "recharge", "dth",
        "tata sky", "dish tv", "netflix", "amazon prime", "hotstar", "spotify",
        "disney", "youtube premium", "subscription", "playstore", "google play",
        "jiomobili",
    ],
    "housing": [
        "rent", "rental", "house", "flat", "apartment", "society", "maintenance",
        "housing", "property", "pg", "hostel", "lease",
        "rentomojo", "furlenco", "nestaway", "nobroker",
    ],
    "health": [
        "hospital", "clinic", "doctor", "medical", "medicine", "pharmacy",
        "apollo", "medplus", "netmeds", "pharmeasy", "practo", "lab", "test",
        "health", "dental", "eye", "diagnostic", "insurance premium",
    ],
    "entertainment": [
        "pvr", "inox", "cinema", "movie", "bookmyshow", "event", "concert",
        "game", "gaming", "playstation", "xbox", "steam", "pub", "bar", "club",
    ],
    "business": [
        "office", "business", "professional", "consulting", "freelance",
        "invoice", "client", "vendor", "supplier",
    ],
    "transfer": [
        "transfer", "neft", "rtgs", "imps", "upi", "self", "own account",
        "internal", "fund transfer", "inft", "to self", "own transfer",
    ],
    "salary": [
        "salary", "payroll", "wages", "income", "credited by employer",
        "salary credit", "payroll credit", "cms", "ltimindtree", "tcs", "infosys",
        "wipro", "hcl", "cognizant", "accenture", "capgemini", "tech mahindra",
    ],
    "investment": [
        "mutual fund", "mf", "sip", "stock", "share", "demat", "zerodha",
        "groww", "upstox", "kuvera", "coin", "investment", "fd", "fixed deposit",
        "rd", "recurring deposit", "ppf", "nps", "nifty", "sensex",
    ],
    "emi": [
        "emi", "loan", "equated monthly", "installment", "bajaj", "hdfc loan",
        "personal loan", "home loan", "car loan", "credit card payment",
        "loan repayment", "bajajpay", "credit card", "bil",
    ],
    "tax": [
        "income tax", "gst", "tds", "tax", "government", "challan", "e-filing",
        "itr", "income tax return", "advance tax", "self assessment",
    ],
    "dividend": [
        "dividend", "div", "intdiv", "interim dividend", "final dividend",
        "bonus", "ach div", "nsdl", "cdsl", "depository",
    ],
}

_KEYWORD_PATTERNS = {
    slug: [(kw, re.compile(rf"\b{re.escape(kw.lower())}\b"), 3 if " " in kw else 2) for kw in keywords]
    for slug, keywords in SYSTEM_RULES.items()
}


@dataclass
class CategorizationResult:
    category: Optional[CachedCategory] = None
    subcategory: Optional[CachedSubcategory] = None
    tx_kind: Optional[str] = None
    counterparty_name: Optional[str] = None
    confidence: float = 0.0
    method: str = CategorizationMethod.NONE.value
    explanation: Optional[str] = None
    needs_embedding: bool = False

    @property
    def matched(self) -> bool:
        return self.category is not None

    def to_dict(self, transaction_id: Optional[int] = None) -> Dict[str, object]:
        return {
            "transaction_id": transaction_id,
            "category_slug": self.category.slug if self.category else None,
            "subcategory_slug": self.subcategory.slug if self.subcategory else None,
            "tx_kind": self.tx_kind,
            "counterparty_name": self.counterparty_name,
            "confidence": round(self.confidence, 4),
            "method": self.method,
            "explanation": self.explanation,
            "needs_embedding": self.needs_embedding,
        }


def no_match(explanation: str = "No rule matches found") -> CategorizationResult:
    return CategorizationResult(explanation=explanation)


def tx_kind_for(category_slug: Optional[str], transaction_type: Optional[str]) -> str:
    if category_slug == "transfer":
        return TxKind.TRANSFER_P2P.value
    if category_slug == "salary":
        if transaction_type == TransactionType.CREDIT.value:
            return TxKind.INCOME_SALARY.value
        return TxKind.SPEND.value
    if category_slug == "investment":
        return TxKind.INVESTMENT.value
    if category_slug == "emi":
        return TxKind.LOAN_EMI.value
    if category_slug == "tax":
        return TxKind.TAX.value
    return TxKind.SPEND.value


class RuleEngine:
    def __init__(
        self,
        cache: CategoryCache,
        user_rules: Sequence[UserRule] = (),
        global_patterns: Sequence[GlobalPattern] = (),
    ):
        self.cache = cache
        self.user_rules = list(user_rules)
        self.global_patterns = list(global_patterns)

    @classmethod
    async def load(
        cls, db: AsyncSession, user_id: Optional[int], cache: Optional[CategoryCache] = None
    ) -> "RuleEngine":
        cache = cache or category_cache
        await cache.ensure_loaded(db)
        user_rules = await learned.active_rules_for_user(db, user_id) if user_id else []
        patterns = await learned.verified_global_patterns(db)
        return cls(cache, user_rules, patterns)

    def categorize(self, transaction) -> CategorizationResult:
        description = transaction.description or transaction.original_description or ""
        normalized = normalize(description)

        result = self.classify_transfer(transaction)
        if result:
            return result

        result = self.match_user_rules(description, normalized)
        if result and result.confidence >= USER_RULE_THRESHOLD:
            return result

        result = self.match_system_rules(normalized, transaction.transaction_type)
        if result:
            return result

        result = self.match_global_patterns(normalized, transaction.transaction_type)
        if result:
            return result

        return no_match()

    def categorize_batch(self, transactions: Iterable) -> Dict[int, CategorizationResult]:
        """Categorise many transactions; only hits are returned, keyed by id."""
        results: Dict[int, CategorizationResult] = {}
        for tx in transactions:
            result = self.categorize(tx)
            if result.matched:
                results[tx.id] = result
        return results

    # Layers ------------------------------------------------------------

    def classify_transfer(self, transaction) -> Optional[CategorizationResult]:
        transfer = TransferClassifier.classify_transaction(transaction)
        if transfer is None:
            return None
        category = self.cache.find_by_slug("transfer")
        if category is None:
            return None
        return CategorizationResult(
            category=category,
            subcategory=self.cache.resolve_subcategory(category.id, transfer.subcategory_slug),
            tx_kind=transfer.tx_kind,
            counterparty_name=transfer.counterparty_name,
            confidence=transfer.confidence,
            method=CategorizationMethod.TRANSFER.value,
            explanation=transfer.explanation,
        )

    def match_user_rules(self, description: str, normalized: str) -> Optional[CategorizationResult]:
        best: Optional[UserRule] = None
        best_confidence = 0.0
        for rule in self.user_rules:
            confidence = learned.rule_confidence(rule, normalized) or learned.rule_confidence(rule, description)
            if confidence and confidence > best_confidence:
                best, best_confidence = rule, confidence
        if best is None:
            return None

        category = self.cache.find_by_id(best.category_id)
        if category is None:
            return None
        learned.record_match(best)
        subcategory = None
        if best.subcategory_id:
            subcategory = next(
                (s for s in self.cache.subcategories_for(category.id) if s.id == best.subcategory_id), None
            )
        subcategory = subcategory or self.cache.find_subcategory(category.id, [best.pattern])
        return CategorizationResult(
            category=category,
            subcategory=subcategory,
            tx_kind=tx_kind_for(category.slug, None),
            confidence=best_confidence,
            method=CategorizationMethod.USER_RULE.value,
            explanation=f"Matched user rule: '{best.pattern}'",
        )

    def match_system_rules(self, normalized: str, transaction_type: Optional[str]) -> Optional[CategorizationResult]:
        if not normalized:
            return None
        best_slug = None
        best_score = 0
        best_keywords: List[str] = []
        for slug, patterns in _KEYWORD_PATTERNS.items():
            score = 0
            matched = []
            for keyword, pattern, weight in patterns:
                if pattern.search(normalized):
                    score += weight
                    matched.append(keyword)
            if score > best_score:
                best_slug, best_score, best_keywords = slug, score, matched
        if best_slug is None:
            return None

        category = self.cache.find_by_slug(best_slug)
        if category is None:
            return None
        base = 0.90 if any(" " in kw for kw in best_keywords) else 0.75
        return CategorizationResult(
            category=category,
            subcategory=self.cache.find_subcategory(category.id, best_keywords),
            tx_kind=tx_kind_for(category.slug, transaction_type),
            confidence=min(base + best_score * 0.02, 0.95),
            method=CategorizationMethod.SYSTEM_RULE.value,
            explanation=f"Matched keywords: {', '.join(best_keywords)}",
        )

    def match_global_patterns(
        self, normalized: str, transaction_type: Optional[str]
    ) -> Optional[CategorizationResult]:
        if not normalized:
            return None
        best: Optional[GlobalPattern] = None
        best_confidence = 0.0
        for pattern in self.global_patterns:
            if not learned.pattern_matches(pattern, normalized):
                continue
            confidence = learned.global_pattern_confidence(pattern)
            if confidence > best_confidence:
                best, best_confidence = pattern, confidence
        if best is None:
            return None

        category = self.cache.find_by_id(best.category_id)
        if category is None:
            return None
        learned.record_match(best)
        return CategorizationResult(
            category=category,
            subcategory=self.cache.find_subcategory(category.id, [best.pattern]),
            tx_kind=tx_kind_for(category.slug, transaction_type),
            confidence=best_confidence,
            method=CategorizationMethod.GLOBAL_PATTERN.value,
            explanation=f"Matched global pattern '{best.pattern}' ({best.user_count} users)",
        )
