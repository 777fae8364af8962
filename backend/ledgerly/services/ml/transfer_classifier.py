"""Classify money movements that are not real spending.

A UPI payment to a friend, a credit card bill payment from savings or a
Paytm wallet top-up all look like debits but should not be counted as
expenses. The classifier runs before any other categorisation layer and
returns ``None`` for anything that does not look like a transfer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from ledgerly.models.enums import TxKind
from .normalization import normalize

MERCHANT_VPA_PATTERNS = [
    re.compile(p, re.I)
    for p in (
        r"zomato", r"swiggy", r"uber", r"ola", r"amazon", r"flipkart",
        r"paytm.*merchant", r"razorpay", r"billdesk", r"phonepe.*merchant",
        r"bharatpe", r"cred", r"slice", r"simpl",
        r"@yesb0", r"@yesbiz",
        r"merchant", r"business", r"pvt", r"ltd", r"llp", r"corp",
    )
]

BUSINESS_NAME_PATTERNS = [
    re.compile(p, re.I) for p in (r"pvt", r"ltd", r"llp", r"corp", r"inc", r"company", r"enterprises")
]

SELF_TRANSFER_PATTERNS = [
    re.compile(p, re.I)
    for p in (
        r"\bself\b",
        r"\bown\s*a/?c",
        r"\bown\s*account",
        r"\bto\s*self\b",
        r"\binternal\s*transfer",
        r"\bcc\s*payment",
        r"\bcredit\s*card\s*payment",
        r"\bcc\s*bill",
        r"\bcard\s*bill",
        r"hdfc\s*cc", r"icici\s*cc", r"axis\s*cc", r"sbi\s*cc", r"kotak\s*cc",
        r"\bsavings?\s*to\s*current",
        r"\bcurrent\s*to\s*savings?",
        r"\bfund\s*transfer\s*self",
        r"\bown\s*transfer",
    )
]

WALLET_LOAD_PATTERNS = [
    re.compile(p, re.I)
    for p in (
        r"paytm\s*(wallet|load|add|topup)",
        r"phonepe\s*(wallet|load|add|topup)",
        r"gpay\s*(wallet|load|add|topup)",
        r"amazon\s*pay\s*(load|add|topup)",
        r"wallet\s*(load|topup|add)",
        r"add\s*money",
        r"load\s*wallet",
        r"mobikwik",
        r"freecharge",
    )
]

BANK_TRANSFER_PATTERNS = [re.compile(rf"\b{p}\b", re.I) for p in ("neft", "rtgs", "imps", "inft", "ift")]

PERSONAL_NAME_PATTERNS = [
    re.compile(r"^[A-Z][a-z]+\s+[A-Z]$"),
    re.compile(r"^[A-Z][a-z]+\s+[A-Z][a-z]+$"),
    re.compile(r"^(Mr|Mrs|Ms|Dr)\s", re.I),
    re.compile(r"\b(mom|dad|papa|mummy|bhai|didi|bro|sis)\b", re.I),
    re.compile(r"^[A-Z][a-z]+(\s+[A-Z][a-z]*){0,2}$"),
]

PERSONAL_VPA_PATTERNS = [
    re.compile(r"^\d{10}@"),
    re.compile(r"^[a-z]+\d*@(ok|yl|pt|gp)", re.I),
    re.compile(r"^[a-z]+\.[a-z]+@", re.I),
    re.compile(r"^[a-z]{3,15}@", re.I),
]

TRANSFER_KEYWORDS = ("upi", "neft", "rtgs", "imps", "transfer", "inft", "ift", "fund")
WALLET_KEYWORDS = ("paytm", "phonepe", "gpay", "wallet", "load", "topup", "add money")

VPA_PATTERN = re.compile(r"([a-zA-Z0-9._-]+@[a-zA-Z0-9]+)")
NAME_NOISE_PATTERN = re.compile(r"\b(UPI|NEFT|IMPS|RTGS|PAYMENT|FROM|TO|FOR)\b", re.I)

WALLET_NAMES = (
    (re.compile(r"paytm"), "Paytm"),
    (re.compile(r"phonepe"), "PhonePe"),
    (re.compile(r"gpay|googlepay"), "Google Pay"),
    (re.compile(r"amazon\s*pay"), "Amazon Pay"),
    (re.compile(r"mobikwik"), "MobiKwik"),
    (re.compile(r"freecharge"), "FreeCharge"),
)


@dataclass
class TransferResult:
    tx_kind: str
    subcategory_slug: str
    confidence: float
    explanation: str
    counterparty_name: Optional[str] = None


class TransferClassifier:
    """Classify a single description as a self, wallet or P2P transfer."""

    def __init__(self, description: Optional[str]):
        self.description = description or ""
        self.normalized = normalize(self.description)

    @classmethod
    def classify_transaction(cls, transaction) -> Optional[TransferResult]:
        return cls(transaction.description or transaction.original_description).classify()

    def classify(self) -> Optional[TransferResult]:
        if not self.transfer_likely():
            return None
        return (
            self._classify_self()
            or self._classify_wallet_load()
            or self._classify_p2p()
            or self._classify_bank_transfer()
        )

    def transfer_likely(self) -> bool:
        if any(kw in self.normalized for kw in TRANSFER_KEYWORDS + WALLET_KEYWORDS):
            return True
        if re.search(r"\b(UPI|NEFT|RTGS|IMPS)\b", self.description, re.I):
            return True
        return self.extract_vpa() is not None

    def _matches_any(self, patterns) -> bool:
        return any(p.search(self.description) or p.search(self.normalized) for p in patterns)

    def _classify_self(self) -> Optional[TransferResult]:
        if not self._matches_any(SELF_TRANSFER_PATTERNS):
            return None
        return TransferResult(
            tx_kind=TxKind.TRANSFER_SELF.value,
            subcategory_slug="transfer-self",
            confidence=0.95,
            explanation="Self/own account transfer",
        )

    def _classify_wallet_load(self) -> Optional[TransferResult]:
        if not self._matches_any(WALLET_LOAD_PATTERNS):
            return None
        wallet = self.wallet_name()
        return TransferResult(
            tx_kind=TxKind.TRANSFER_WALLET.value,
            subcategory_slug="transfer-wallet",
            counterparty_name=wallet,
            confidence=0.90,
            explanation=f"Wallet load ({wallet})" if wallet else "Wallet load",
        )

    def _classify_p2p(self) -> Optional[TransferResult]:
        vpa = self.extract_vpa()
        name = self.extract_name()
        if looks_like_merchant(vpa, name):
            return None

        if vpa and is_personal_vpa(vpa):
            return TransferResult(
                tx_kind=TxKind.TRANSFER_P2P.value,
                subcategory_slug="transfer-p2p",
                counterparty_name=name or name_from_vpa(vpa),
                confidence=0.90,
                explanation=f"UPI transfer to individual ({name or vpa})",
            )

        if name and is_personal_name(name) and self.is_bank_transfer():
            return TransferResult(
                tx_kind=TxKind.TRANSFER_P2P.value,
                subcategory_slug="transfer-p2p",
                counterparty_name=name,
                confidence=0.85,
                explanation=f"Transfer to individual ({name})",
            )
        return None

    def _classify_bank_transfer(self) -> Optional[TransferResult]:
        name = self.extract_name()
        if not self.is_bank_transfer() or looks_like_merchant(None, name):
            return None
        return TransferResult(
            tx_kind=TxKind.TRANSFER_P2P.value,
            subcategory_slug="transfer-p2p",
            counterparty_name=name,
            confidence=0.70,
            explanation=f"Bank transfer to {name}" if name else "Bank transfer",
        )

    def is_bank_transfer(self) -> bool:
        return any(p.search(self.description) for p in BANK_TRANSFER_PATTERNS)

    def extract_vpa(self) -> Optional[str]:
        match = VPA_PATTERN.search(self.description)
        return match.group(1).lower() if match else None

    def extract_name(self) -> Optional[str]:
        """Pull a counterparty name out of common UPI / NEFT / IMPS layouts."""
        desc = self.description

        match = re.search(r"UPI/([A-Z][A-Z\s]+?)/(.*@|payment|order)", desc, re.I)
        if match and 2 < len(match.group(1).strip()) < 50:
            return clean_name(match.group(1))

        match = re.search(r"NEFT\s*(TO\s+)?([A-Z][A-Z\s]+)", desc, re.I)
        if match and 2 < len(match.group(2).strip()) < 50:
            return clean_name(match.group(2))

        match = re.search(r"IMPS/([A-Z][A-Z\s]+?)/", desc, re.I)
        if match and 2 < len(match.group(1).strip()) < 30:
            return clean_name(match.group(1))

        match = re.search(r"\b([A-Z][a-z]+\s+[A-Z][a-z]*)\b", desc)
        if match:
            return match.group(1)
        return None

    def wallet_name(self) -> Optional[str]:
        lowered = self.description.lower()
        for pattern, name in WALLET_NAMES:
            if pattern.search(lowered):
                return name
        return None


def clean_name(name: str) -> Optional[str]:
    cleaned = re.sub(r"\s+", " ", NAME_NOISE_PATTERN.sub("", name)).strip()
    return cleaned or None


def name_from_vpa(vpa: Optional[str]) -> Optional[str]:
    if not vpa:
        return None
    local = vpa.split("@", 1)[0]
    if local.isdigit():
        return None
    readable = re.sub(r"[0-9_.-]", " ", local).strip()
    return " ".join(readable.split()).title() or None


def is_personal_vpa(vpa: Optional[str]) -> bool:
    return bool(vpa) and any(p.search(vpa) for p in PERSONAL_VPA_PATTERNS)


def is_personal_name(name: Optional[str]) -> bool:
    return bool(name) and any(p.search(name) for p in PERSONAL_NAME_PATTERNS)


def looks_like_merchant(vpa: Optional[str], name: Optional[str]) -> bool:
    if vpa and any(p.search(vpa) for p in MERCHANT_VPA_PATTERNS):
        return True
    if name and any(p.search(name) for p in BUSINESS_NAME_PATTERNS):
        return True
    return False
