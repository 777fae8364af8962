"""Header-field extraction for invoices registered as raw document text.

An invoice created with ``text`` but without a ``total_amount`` starts in
``pending``. The ``extract_invoice`` actor runs :class:`InvoiceExtractionService`,
which:

1. parses the text with regular expressions (:class:`InvoiceFieldParser`);
2. asks the chat model to resolve what the rules left open, when the
   rules are unsure and an OpenAI client is configured;
3. moves the invoice to ``extracted`` when a total amount was found, or
   to ``failed`` otherwise.

The document text itself is kept in ``extracted_data["source_text"]``
until extraction replaces it with a shorter excerpt.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import re
from typing import Any, Dict, List, Optional, Pattern

import openai
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.core.config import settings
from ledgerly.models.enums import InvoiceStatus
from ledgerly.models.schemas import GSTIN_PATTERN
from ledgerly.models.tables import Invoice
from ledgerly.services.invoices import SOURCE_TEXT_KEY, mark_extracted, mark_failed, mark_processing
from ledgerly.services.ml.clients import get_openai_client, openai_configured, with_rate_limit_retry

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 10_000
LLM_TEXT_LIMIT = 8000
MAX_AMOUNT = 100_000_000

# Below AMBIGUITY_THRESHOLD the model is always asked; below
# RULES_CONFIDENCE_THRESHOLD only when the vendor is unknown.
RULES_CONFIDENCE_THRESHOLD = 0.5
AMBIGUITY_THRESHOLD = 0.3

FIELDS = ("vendor_name", "invoice_number", "invoice_date", "total_amount", "vendor_gstin")

_CURRENCY = r"(?:Rs\.?|INR|₹)"
_NUMBER = r"([\d,]+(?:\.\d{2})?)"

FINAL_AMOUNT_PATTERNS: List[Pattern[str]] = [
    re.compile(rf"total\s*\((?:inr|₹)\)[:\s]*{_CURRENCY}?\s*{_NUMBER}", re.I),
    re.compile(
        r"(?:grand\s*total|net\s*payable|payable\s*amount|amount\s*payable|final\s*amount|invoice\s*total)"
        rf"[:\s]*{_CURRENCY}?\s*{_NUMBER}",
        re.I,
    ),
    re.compile(rf"(?:total\s*due|amount\s*due|balance\s*due)[:\s]*{_CURRENCY}?\s*{_NUMBER}", re.I),
]

AMOUNT_PATTERNS: List[Pattern[str]] = [
    re.compile(rf"total[:\s]*{_CURRENCY}\s*{_NUMBER}", re.I),
    re.compile(rf"{_CURRENCY}\s*{_NUMBER}\s*(?:total|only|-/|-)", re.I),
    re.compile(rf"(?:total\s*amount|invoice\s*amount)[:\s]*{_NUMBER}", re.I),
    re.compile(rf"{_CURRENCY}\s*{_NUMBER}", re.I),
]

_MONTHS = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*"
DATE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"(?:invoice\s*date|date|dated|bill\s*date|order\s*date)[:\s]*(\d{1,2}[-/]\d{1,2}[-/]\d{2,4})", re.I),
    re.compile(rf"({_MONTHS}\s+\d{{1,2}},?\s+\d{{4}})", re.I),
    re.compile(rf"(\d{{1,2}}\s+{_MONTHS}\s+\d{{2,4}})", re.I),
    re.compile(r"(\d{4}-\d{2}-\d{2})"),
    re.compile(r"(\d{1,2}[-/]\d{1,2}[-/]\d{2,4})"),
]
DATE_FORMATS = [
    "%d/%m/%Y", "%d-%m-%Y", "%d/%m/%y", "%d-%m-%y",
    "%Y-%m-%d", "%d %b %Y", "%d %B %Y", "%d%b%Y",
    "%b %d, %Y", "%B %d, %Y", "%b %d %Y", "%B %d %Y",
]

GSTIN_SEARCH = re.compile(r"\d{2}[A-Z]{5}\d{4}[A-Z][A-Z\d]Z[A-Z\d]")

INVOICE_NUMBER_PATTERNS: List[Pattern[str]] = [
    re.compile(
        r"(?:invoice\s*no\.?|inv\.?\s*no\.?|invoice\s*#|invoice\s*number|bill\s*no\.?)[:\s]*([A-Z0-9\-/]+)", re.I
    ),
    re.compile(r"(?:receipt\s*no\.?|order\s*id|order\s*no\.?)[:\s]*([A-Z0-9\-/]+)", re.I),
    re.compile(r"(?:ref\.?\s*no\.?|reference)[:\s]*([A-Z0-9\-/]+)", re.I),
]

KNOWN_VENDORS: Dict[str, List[str]] = {
    "Amazon": ["amazon.in", "amazon india", "cloudtail", "appario", "amazon seller"],
    "Flipkart": ["flipkart", "ekart"],
    "Swiggy": ["swiggy", "bundl technologies"],
    "Zomato": ["zomato"],
    "Uber": ["uber india", "uber b.v.", "uber eats"],
    "Ola": ["ani technologies", "ola cabs"],
    "BigBasket": ["bigbasket", "supermarket grocery", "innovative retail"],
    "Paytm": ["paytm", "one97"],
    "MakeMyTrip": ["makemytrip", "make my trip"],
    "BookMyShow": ["bookmyshow", "bigtree"],
    "Urban Company": ["urbancompany", "urban company", "urbanclap"],
    "Myntra": ["myntra"],
    "Nykaa": ["nykaa", "fsn e-commerce"],
    "Zepto": ["zepto", "kiranakart"],
    "Blinkit": ["blinkit", "grofers"],
}

VENDOR_PATTERNS: List[Pattern[str]] = [
    re.compile(r"(?:sold\s*by|seller|merchant|vendor)[:\s]*([A-Za-z][A-Za-z &.]{2,40})", re.I),
    re.compile(r"(?:billed\s*by|invoice\s*from)[:\s]*([A-Za-z][A-Za-z &.]{2,40})", re.I),
    re.compile(r"(?:company\s*name|business\s*name)[:\s]*([A-Za-z][A-Za-z &.]{2,40})", re.I),
]
VENDOR_SUFFIXES = re.compile(r"\s*\b(Private|Pvt|Ltd|Limited|LLP|Inc|Corp)\b\.?\s*", re.I)

FIELD_WEIGHTS = {
    "total_amount": 1.5,
    "invoice_date": 1.0,
    "vendor_name": 1.0,
    "invoice_number": 0.5,
    "vendor_gstin": 0.5,
}

SYSTEM_PROMPT = "You are a document parsing assistant. Output only valid JSON."

USER_PROMPT = """Extract the following fields from this Indian invoice or receipt.

Guidelines:
1. total_amount: the FINAL payable amount (Grand Total, Net Payable, Amount Due), not subtotals or tax lines.
2. vendor_name: the seller, not the buyer.
3. invoice_date: ISO format YYYY-MM-DD.
4. invoice_number: the invoice, receipt or order number.
5. vendor_gstin: the seller's 15 character GST number.
{candidates}
Document text:
---
{text}
---

Respond with JSON: {{"vendor_name": "string or null", "invoice_number": "string or null", "invoice_date": "YYYY-MM-DD or null", "total_amount": number or null, "vendor_gstin": "string or null", "confidence": 0.0-1.0}}"""


def parse_invoice_date(value: Any, today: Optional[dt.date] = None) -> Optional[dt.date]:
    """Parse a date in one of the common Indian layouts; rejects pre-2000 and far-future dates."""
    if value is None:
        return None
    if isinstance(value, dt.date):
        return value
    cleaned = re.sub(r"\s+", " ", str(value)).strip()
    if not cleaned:
        return None
    latest = (today or dt.date.today()) + dt.timedelta(days=365)
    for fmt in DATE_FORMATS:
        try:
            parsed = dt.datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
        if parsed.year >= 2000 and parsed <= latest:
            return parsed
    return None


def valid_gstin(value: Any) -> Optional[str]:
    if not value:
        return None
    text = str(value).strip().upper()
    return text if GSTIN_PATTERN.match(text) else None


def _amount(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        amount = float(str(value).replace(",", ""))
    except ValueError:
        return None
    return amount if 0 < amount < MAX_AMOUNT else None


class InvoiceFieldParser:
    """Rule based extraction of invoice header fields from plain text."""

    def __init__(self, text: str, today: Optional[dt.date] = None) -> None:
        self.text = text or ""
        self.today = today

    def parse(self) -> Dict[str, Any]:
        fields = {
            "vendor_name": self.vendor_name(),
            "vendor_gstin": self.gstin(),
            "invoice_number": self.invoice_number(),
            "invoice_date": self.invoice_date(),
            "total_amount": self.total_amount(),
            "currency": "INR",
        }
        fields["confidence"] = confidence_for(fields)
        return fields

    def total_amount(self) -> Optional[float]:
        for patterns in (FINAL_AMOUNT_PATTERNS, AMOUNT_PATTERNS):
            for pattern in patterns:
                match = pattern.search(self.text)
                if match:
                    amount = _amount(match.group(1))
                    if amount is not None:
                        return amount
        return None

    def invoice_date(self) -> Optional[dt.date]:
        for pattern in DATE_PATTERNS:
            match = pattern.search(self.text)
            if match:
                return parse_invoice_date(match.group(1), self.today)
        return None

    def gstin(self) -> Optional[str]:
        match = GSTIN_SEARCH.search(self.text)
        return match.group(0) if match else None

    def invoice_number(self) -> Optional[str]:
        for pattern in INVOICE_NUMBER_PATTERNS:
            match = pattern.search(self.text)
            if match:
                number = match.group(1).strip()
                if 3 <= len(number) <= 50:
                    return number
        return None

    def vendor_name(self) -> Optional[str]:
        lowered = self.text.lower()
        for name, needles in KNOWN_VENDORS.items():
            if any(needle in lowered for needle in needles):
                return name
        for pattern in VENDOR_PATTERNS:
            match = pattern.search(self.text)
            if match:
                return clean_vendor_name(match.group(1))
        return None


def clean_vendor_name(raw: str) -> Optional[str]:
    name = " ".join(word.capitalize() for word in raw.split())
    name = VENDOR_SUFFIXES.sub(" ", name).strip()
    return name if len(name) >= 2 else None


def confidence_for(fields: Dict[str, Any]) -> float:
    found = sum(weight for key, weight in FIELD_WEIGHTS.items() if fields.get(key))
    return round(found / sum(FIELD_WEIGHTS.values()), 2)


class LlmInvoiceExtractor:
    """Chat model fallback for fields the rules could not settle."""

    def __init__(self, client=None) -> None:
        self._client = client
        self.model = settings.OPENAI_CHAT_MODEL

    @property
    def client(self):
        return self._client or get_openai_client()

    @property
    def enabled(self) -> bool:
        return self._client is not None or openai_configured()

    async def extract(self, text: str, candidates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None
        listing = "".join(f"- {key}: {value}\n" for key, value in candidates.items() if value is not None)
        prompt = USER_PROMPT.format(
            candidates=f"\nCandidates found by rules (pick the best one):\n{listing}" if listing else "",
            text=text[:LLM_TEXT_LIMIT],
        )
        try:
            response = await with_rate_limit_retry(
                lambda: self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": prompt}],
                    response_format={"type": "json_object"},
                    temperature=0.1,
                    max_tokens=500,
                ),
                label="invoice extraction",
            )
        except openai.OpenAIError as exc:
            logger.error("LLM invoice extraction failed: %s", exc)
            return None
        return self.parse_response(response.choices[0].message.content)

    @staticmethod
    def parse_response(content: Optional[str]) -> Optional[Dict[str, Any]]:
        if not content:
            return None
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.error("LLM returned invalid JSON: %s", content[:200])
            return None
        if not isinstance(data, dict):
            return None
        try:
            confidence = float(data.get("confidence", 0.7))
        except (TypeError, ValueError):
            confidence = 0.7
        return {
            "vendor_name": (str(data["vendor_name"]).strip() or None) if data.get("vendor_name") else None,
            "invoice_number": (str(data["invoice_number"]).strip() or None) if data.get("invoice_number") else None,
            "invoice_date": parse_invoice_date(data.get("invoice_date")),
            "total_amount": _amount(data.get("total_amount")),
            "vendor_gstin": valid_gstin(data.get("vendor_gstin")),
            "confidence": max(0.0, min(confidence, 1.0)),
        }


def needs_llm(fields: Dict[str, Any]) -> bool:
    confidence = fields.get("confidence") or 0.0
    if confidence < AMBIGUITY_THRESHOLD or fields.get("total_amount") is None:
        return True
    return confidence < RULES_CONFIDENCE_THRESHOLD and fields.get("vendor_name") is None


def merge_fields(rules: Dict[str, Any], llm: Dict[str, Any]) -> Dict[str, Any]:
    """Fill the gaps in ``rules`` from ``llm``; rule values win when both exist."""
    merged = dict(rules)
    for key in FIELDS:
        if merged.get(key) is None and llm.get(key) is not None:
            merged[key] = llm[key]
    if llm.get("confidence") is not None:
        merged["confidence"] = max(rules.get("confidence") or 0.0, llm["confidence"])
    return merged


def _json_ready(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v.isoformat() if isinstance(v, dt.date) else v for k, v in fields.items()}


class InvoiceExtractionService:
    def __init__(self, db: AsyncSession, llm: Optional[LlmInvoiceExtractor] = None) -> None:
        self.db = db
        self.llm = llm or LlmInvoiceExtractor()

    async def extract(self, invoice: Invoice) -> Dict[str, Any]:
        """Extract header fields for a ``pending`` invoice; changes state only, callers commit."""
        if invoice.status != InvoiceStatus.PENDING.value:
            return {"success": False, "error": f"Invoice in status {invoice.status} cannot be extracted"}

        text = str((invoice.extracted_data or {}).get(SOURCE_TEXT_KEY) or "").strip()
        mark_processing(invoice)
        if not text:
            mark_failed(invoice, "No readable text found in document")
            return {"success": False, "error": "No readable text found"}

        rules = InvoiceFieldParser(text).parse()
        pipeline: Dict[str, Any] = {
            "rules_extraction": {
                "confidence": rules["confidence"],
                "fields_found": sum(1 for key in FIELDS if rules.get(key)),
            },
            "llm_used": False,
        }
        fields = rules
        methods = ["rules"]
        if needs_llm(rules) and self.llm.enabled:
            candidates = {key: rules.get(key) for key in FIELDS}
            llm_fields = await self.llm.extract(text, _json_ready(candidates))
            if llm_fields:
                fields = merge_fields(rules, llm_fields)
                pipeline["llm_used"] = True
                methods.insert(0, "llm")
            else:
                pipeline["llm_error"] = "no usable response"
        else:
            pipeline["llm_skipped_reason"] = "rules sufficient" if not needs_llm(rules) else "llm not configured"

        if fields.get("total_amount") is None:
            mark_failed(invoice, "No amount found in invoice")
            logger.info("Invoice %s extraction found no amount", invoice.id)
            return {"success": False, "error": "No amount found in invoice"}

        method = "+".join(methods)
        mark_extracted(
            invoice,
            {
                **fields,
                "raw_data": {
                    "text_excerpt": text[:EXCERPT_LENGTH],
                    "extraction_pipeline": pipeline,
                    "parsed_fields": _json_ready(fields),
                },
                "method": method,
            },
        )
        logger.info(
            "Invoice %s extracted via %s (confidence %.2f)", invoice.id, method, invoice.extraction_confidence or 0.0
        )
        return {
            "success": True,
            "invoice_id": invoice.id,
            "status": invoice.status,
            "method": method,
            "confidence": invoice.extraction_confidence,
        }
