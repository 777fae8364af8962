"""Scorers for invoice to transaction matching.

Each scorer takes an invoice and a candidate transaction and returns an
integer number of points. ``SCORERS`` maps the breakdown key to the
scorer; the matching service sums them and caps the total at 100.

* ``amount`` (max 50): exact to the paisa, within 1 % or within 5 %.
* ``date`` (max 25): same day, 1 day, 2 to 3 days or 4 to 7 days apart.
* ``vendor`` (max 25): vendor name contained in the description or
  counterparty, or at least one shared word longer than two characters.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, Set

AMOUNT_WEIGHTS = {"exact": 50, "within_1_percent": 35, "within_5_percent": 20}
DATE_WEIGHTS = {"same_day": 25, "within_1_day": 20, "within_3_days": 15, "within_7_days": 5}
VENDOR_WEIGHTS = {"exact": 25, "partial": 15}
MAX_SCORE = 100


def normalize_vendor(text) -> str:
    value = str(text or "").lower()
    value = re.sub(r"[/\-_@.]", " ", value)
    value = re.sub(r"[^a-z0-9\s]", "", value)
    return re.sub(r"\s+", " ", value).strip()


def _words(text: str) -> Set[str]:
    return {w for w in text.split() if len(w) > 2}


def score_amount(invoice, transaction) -> int:
    total = float(invoice.total_amount or 0)
    if total <= 0:
        return 0
    diff = abs(float(transaction.amount or 0) - total)
    if diff < 0.01:
        return AMOUNT_WEIGHTS["exact"]
    ratio = diff / total
    if ratio <= 0.01:
        return AMOUNT_WEIGHTS["within_1_percent"]
    if ratio <= 0.05:
        return AMOUNT_WEIGHTS["within_5_percent"]
    return 0


def score_date(invoice, transaction) -> int:
    if invoice.invoice_date is None or transaction.transaction_date is None:
        return 0
    days = abs((transaction.transaction_date - invoice.invoice_date).days)
    if days == 0:
        return DATE_WEIGHTS["same_day"]
    if days == 1:
        return DATE_WEIGHTS["within_1_day"]
    if days <= 3:
        return DATE_WEIGHTS["within_3_days"]
    if days <= 7:
        return DATE_WEIGHTS["within_7_days"]
    return 0


def score_vendor(invoice, transaction) -> int:
    vendor = normalize_vendor(invoice.vendor_name)
    if not vendor:
        return 0
    description = normalize_vendor(transaction.description)
    merchant = normalize_vendor(transaction.counterparty_name or transaction.original_description)
    if vendor in description or vendor in merchant:
        return VENDOR_WEIGHTS["exact"]
    if _words(vendor) & _words(f"{description} {merchant}"):
        return VENDOR_WEIGHTS["partial"]
    return 0


SCORERS: Dict[str, Callable[..., int]] = {
    "amount": score_amount,
    "date": score_date,
    "vendor": score_vendor,
}


def score_candidate(invoice, transaction, scorers: Dict[str, Callable[..., int]] = SCORERS):
    """Return ``(total, breakdown)`` for one candidate."""
    breakdown = {name: scorer(invoice, transaction) for name, scorer in scorers.items()}
    return min(sum(breakdown.values()), MAX_SCORE), breakdown
