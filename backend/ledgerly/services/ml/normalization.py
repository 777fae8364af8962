"""Transaction description normalisation.

Bank narrations are noisy: UPI handles, reference numbers, dates and
amounts are mixed in with the part that actually identifies the
merchant. Every learning layer (user rules, labeled examples, global
patterns, embeddings) keys off the normalised form produced here, so
two narrations for the same merchant should normalise to the same
short string, e.g.::

    >>> normalize("UPI/PAYZOMATO/9876543210@ybl/Ref 1234")
    'zomato pay 9876543210'
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

UPI_PATTERN = re.compile(r"\b(upi|vpa|@)\w*", re.I)
REFERENCE_PATTERN = re.compile(r"\b(ref|refno|ref no|reference|txn id|txnid|transaction id)[\s:]*[\w-]+", re.I)
DATE_PATTERN = re.compile(r"\b\d{1,2}[-/]\d{1,2}[-/]\d{2,4}\b")
TIME_PATTERN = re.compile(r"\b\d{1,2}:\d{2}(:\d{2})?\s*(am|pm)?\b", re.I)
AMOUNT_PATTERN = re.compile(r"₹[\d,]+\.?\d*|rs\.?\s*[\d,]+\.?\d*", re.I)
ACCOUNT_PATTERN = re.compile(r"\b(ac|acc|account|a/c)[\s:]*[\w-]+", re.I)
TRANSACTION_ID_PATTERN = re.compile(r"\b(txn|transaction|id|tid)[\s:]*[\w-]+", re.I)

# Most specific first; the first pattern that hits wins.
MERCHANT_EXTRACTORS: List[re.Pattern] = [
    re.compile(r"\b(swiggy|zomato|uber\s*eats|dominos|mcdonalds|starbucks|dunkin)", re.I),
    re.compile(r"(pay)?zomato", re.I),
    re.compile(r"(pay)?swiggy", re.I),
    re.compile(r"starbucks(in)?", re.I),
    re.compile(r"\b(uber|ola|rapido|irctc|makemytrip)\b", re.I),
    re.compile(r"\b(amazon|flipkart|myntra|ajio|nykaa|meesho)\b", re.I),
    re.compile(r"(grofers|blinkit|zepto|instamart|bigbasket)", re.I),
    re.compile(r"\b(airtel|jio|vodafone|vi|bsnl)\b", re.I),
    re.compile(r"\b(netflix|spotify|prime|hotstar|disney|youtube)\b", re.I),
    re.compile(r"\b(paytm|phonepe|gpay|razorpay)\b", re.I),
    re.compile(r"\b(rentomojo|furlenco|nestaway)\b", re.I),
]

MERCHANT_ALIASES: Dict[str, str] = {
    "payzomato": "zomato",
    "payswiggy": "swiggy",
    "starbucksin": "starbucks",
    "grofersindia": "groceries blinkit",
    "grofers": "groceries blinkit",
}

FINANCIAL_ABBREVIATIONS: Dict[str, str] = {
    "intdiv": "interim dividend",
    "findiv": "final dividend",
    "div": "dividend",
    "int": "interest",
    "sal": "salary",
    "cred": "credit",
    "deb": "debit",
    "xfer": "transfer",
    "txn": "transaction",
    "emi": "emi loan",
    "neft": "neft transfer",
    "rtgs": "rtgs transfer",
    "imps": "imps transfer",
    "ach": "ach clearing",
}

KNOWN_BRANDS = (
    "asian paints steel motors bank "
    "tata infosys wipro hcl tech mahindra reliance "
    "hdfc icici axis kotak sbi pnb bob canara union "
    "itc nestle hindustan unilever britannia dabur marico "
    "bharti airtel jio vodafone idea "
    "maruti hyundai honda toyota suzuki bajaj hero tvs "
    "amazon flipkart myntra ajio zomato swiggy uber ola "
    "lulu mall market"
).split()

MAX_WORDS = 6
SPLIT_PASSES = 3

_ABBREVIATIONS_LONGEST_FIRST = sorted(FINANCIAL_ABBREVIATIONS, key=len, reverse=True)
_ABBREVIATION_PATTERNS = [
    (re.compile(rf"\b{re.escape(abbrev)}\b"), FINANCIAL_ABBREVIATIONS[abbrev])
    for abbrev in _ABBREVIATIONS_LONGEST_FIRST
]


def normalize(description: Optional[str]) -> str:
    """Return the normalised form of a transaction description."""
    original = (description or "").strip()
    if not original:
        return ""

    text = original.lower()
    for pattern in (
        UPI_PATTERN,
        REFERENCE_PATTERN,
        DATE_PATTERN,
        TIME_PATTERN,
        AMOUNT_PATTERN,
        ACCOUNT_PATTERN,
        TRANSACTION_ID_PATTERN,
    ):
        text = pattern.sub("", text)
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"[^\w\s-]", " ", text)
    text = split_concatenated_words(text)
    text = expand_abbreviations(text)
    text = extract_merchant(text).strip()

    words = [w for w in text.split() if len(w) >= 2]
    return " ".join(words[:MAX_WORDS])


def split_concatenated_words(text: str) -> str:
    """Split glued words such as ``asianpaintsintdiv`` into ``asian paints intdiv``."""
    result = text
    for _ in range(SPLIT_PASSES):
        updated = " ".join(_split_word(w) for w in result.split())
        if updated == result:
            break
        result = updated
    return result


def _split_word(word: str) -> str:
    if len(word) < 6:
        return word

    split = _split_by_brand(word)
    if split != word:
        return split

    split = re.sub(r"([a-z])([A-Z])", r"\1 \2", word).lower()
    if split != word:
        return split

    return _split_by_financial_suffix(word)


def _split_by_brand(word: str) -> str:
    for brand in KNOWN_BRANDS:
        if brand in word and word != brand:
            before, after = word.split(brand, 1)
            parts = []
            if len(before.strip()) >= 2:
                parts.append(before.strip())
            parts.append(brand)
            if len(after.strip()) >= 2:
                parts.append(after.strip())
            if len(parts) > 1:
                return " ".join(parts)
    return word


def _split_by_financial_suffix(word: str) -> str:
    if word in FINANCIAL_ABBREVIATIONS:
        return word
    for abbrev in _ABBREVIATIONS_LONGEST_FIRST:
        # Short abbreviations such as "int" would split far too eagerly.
        if len(abbrev) < 3 or word == abbrev or not word.endswith(abbrev):
            continue
        prefix = word[: -len(abbrev)]
        if len(prefix) >= 3:
            return f"{prefix} {abbrev}"
    return word


def expand_abbreviations(text: str) -> str:
    result = text
    for pattern, expansion in _ABBREVIATION_PATTERNS:
        result = pattern.sub(expansion, result)
    return result


def extract_merchant(text: str) -> str:
    """Move a known merchant name to the front, keeping a little context."""
    result = text
    for alias, canonical in MERCHANT_ALIASES.items():
        result = re.sub(alias, canonical, result, flags=re.I)

    pattern = next((p for p in MERCHANT_EXTRACTORS if p.search(result)), None)
    if pattern is None:
        return result

    match = pattern.search(result)
    merchant = match.group(0).strip().lower()
    remaining = [w for w in pattern.sub("", result).split() if len(w) >= 2]
    if remaining:
        return f"{merchant} {' '.join(remaining[:3])}"
    return merchant


def first_words(text: Optional[str], count: int = 3) -> str:
    """Return the first ``count`` words of the normalised description."""
    return " ".join(normalize(text).split()[:count])
