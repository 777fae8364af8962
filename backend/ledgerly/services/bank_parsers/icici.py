"""ICICI Bank statement parsers.

ICICI exports differ per account type:

* savings: separate ``Withdrawal Amount (INR)`` / ``Deposit Amount (INR)``
  columns next to ``Transaction Remarks``;
* current: one ``Transaction Amount(INR)`` column plus a ``Cr/Dr`` marker;
* credit card: ``Amount(in Rs)`` with a ``BillingAmountSign`` column that
  is ``CR`` for payments and refunds and blank for purchases.

Column names drift between exports (spacing, ``(INR)`` vs ``(INR )``), so
headers are resolved once per file against the template mapping and a
list of known spellings, compared case- and whitespace-insensitively.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Any, Dict, List, Optional, Sequence

from ledgerly.models.enums import TransactionType
from .base import BaseParser, Row, _blank, cell_str, find_header_row

ICICI_DATE_FORMATS = ["%d-%m-%Y", "%d/%m/%Y"]
HEADER_SCAN_ROWS = 30

COLUMN_FALLBACKS: Dict[str, List[str]] = {
    "date": ["Value Date", "Transaction Date", "Date", "Txn Date", "Posting Date", "Tran Date"],
    "narration": [
        "Transaction Remarks", "Description", "Narration", "Particulars",
        "Details", "Remarks", "Transaction Details",
    ],
    "reference": [
        "Cheque Number", "Chq No", "Transaction ID", "Reference", "Ref No",
        "Reference Number", "Txn ID", "Chq./Ref.No.",
    ],
    "amount": [
        "Transaction Amount(INR)", "Transaction Amount (INR)", "Transaction Amount",
        "Amount", "Amount (INR)", "Amount(INR)",
    ],
    "withdrawal": [
        "Withdrawal Amount(INR)", "Withdrawal Amount (INR)", "Withdrawal", "Withdrawal Amount",
        "Debit", "Dr", "Debit Amount", "Debit(INR)",
    ],
    "deposit": [
        "Deposit Amount(INR)", "Deposit Amount (INR)", "Deposit", "Deposit Amount",
        "Credit", "Cr", "Credit Amount", "Credit(INR)",
    ],
    "balance": [
        "Balance(INR)", "Balance (INR)", "Available Balance(INR)", "Balance",
        "Closing Balance", "Running Balance", "Available Balance",
    ],
    "cr_dr": ["Cr/Dr", "CR/DR", "Type", "Dr/Cr", "Transaction Type"],
}

SKIP_PATTERNS = [
    "opening balance",
    "closing balance",
    "statement summary",
    "total",
    "transactions list",
    "account number",
    "statement period",
    "search",
    "advanced search",
]


def normalize_column(name: Any) -> str:
    return re.sub(r"\s+", " ", str(name or "")).strip().lower()


class IciciParser(BaseParser):
    """Shared ICICI logic; subclasses implement :meth:`extract`."""

    bank_code = "icici"
    header_indicators = [
        "Transaction ID",
        "Value Date",
        "S No.",
        "Transaction Remarks",
        "Withdrawal Amount",
    ]
    skip_patterns = SKIP_PATTERNS
    column_fallbacks = COLUMN_FALLBACKS
    credit_indicators = ("cr", "credit", "c")
    debit_indicators = ("dr", "debit", "d")

    def __init__(self, content: bytes, file_type: str, template=None):
        super().__init__(content, file_type, template)
        self.resolved: Dict[str, str] = {}

    @property
    def indicators(self) -> List[str]:
        return list(self.parser_config.get("header_indicators") or self.header_indicators)

    @property
    def skip_list(self) -> List[str]:
        return [p.lower() for p in (self.parser_config.get("skip_patterns") or self.skip_patterns)]

    # Header handling -----------------------------------------------------

    def header_row_index(self, rows: List[Row]) -> int:
        if self.parser_config.get("header_row") is not None:
            return int(self.parser_config["header_row"])
        indicators = [i.lower() for i in self.indicators]
        for idx, row in enumerate(rows[:HEADER_SCAN_ROWS]):
            text = " ".join(str(c) for c in row if not _blank(c)).lower()
            hits = sum(1 for ind in indicators if ind in text)
            has_date = "date" in text
            has_amount = any(word in text for word in ("amount", "withdrawal", "deposit"))
            if hits >= 2 or (has_date and has_amount):
                return idx
        return find_header_row(rows, self.indicators)

    def on_headers(self, headers: Sequence[Optional[str]]) -> None:
        """Resolve each logical column to the header used in this file."""
        by_normalized = {normalize_column(h): h for h in headers if h}
        self.resolved = {}
        for key, fallbacks in self.column_fallbacks.items():
            candidates = [self.column_mappings.get(key)] + list(fallbacks)
            for candidate in candidates:
                header = by_normalized.get(normalize_column(candidate)) if candidate else None
                if header:
                    self.resolved[key] = header
                    break

    def value(self, row: Dict[str, Any], key: str) -> Any:
        header = self.resolved.get(key)
        return row.get(header) if header else None

    def skip_row(self, row: Row, data: Dict[str, Any]) -> bool:
        if all(_blank(v) for v in data.values()):
            return True
        first = next(iter(data.values()), None)
        first_text = str(first).lower() if not _blank(first) else ""
        narration = str(self.value(data, "narration") or "").lower()
        return any(p in first_text or p in narration for p in self.skip_list)

    # Field helpers ---------------------------------------------------------

    def parse_date(self, value: Any) -> Optional[dt.date]:
        if isinstance(value, str) and value.strip():
            formats = self.parser_config.get("date_formats") or (
                [self.parser_config["date_format"]] if self.parser_config.get("date_format") else []
            )
            for fmt in list(formats) + ICICI_DATE_FORMATS:
                try:
                    return dt.datetime.strptime(value.strip(), fmt).date()
                except ValueError:
                    continue
        return super().parse_date(value)

    def type_from_marker(self, marker: Any) -> Optional[str]:
        if _blank(marker):
            return None
        text = str(marker).strip().lower()
        if any(text.startswith(ind) for ind in self.credit_indicators):
            return TransactionType.CREDIT.value
        if any(text.startswith(ind) for ind in self.debit_indicators):
            return TransactionType.DEBIT.value
        return None

    def common_fields(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "date": self.parse_date(self.value(row, "date")),
            "description": self.clean_description(self.value(row, "narration")),
            "reference": cell_str(self.value(row, "reference")),
        }


class IciciSavingsParser(IciciParser):
    """Savings account: separate withdrawal and deposit columns."""

    def extract(self, row: Dict[str, Any]) -> Dict[str, Any]:
        withdrawal = self.parse_amount(self.value(row, "withdrawal"))
        deposit = self.parse_amount(self.value(row, "deposit"))
        if deposit > 0:
            amount, transaction_type = deposit, TransactionType.CREDIT.value
        elif withdrawal > 0:
            amount, transaction_type = withdrawal, TransactionType.DEBIT.value
        else:
            # Some exports use a single amount column with a Cr/Dr marker.
            amount = self.parse_amount(self.value(row, "amount"))
            marker = self.value(row, "cr_dr")
            if amount > 0 and not _blank(marker):
                transaction_type = self.type_from_marker(marker) or TransactionType.DEBIT.value
            else:
                amount, transaction_type = 0.0, TransactionType.DEBIT.value
        return self.build(
            amount=amount,
            transaction_type=transaction_type,
            balance=self.parse_amount(self.value(row, "balance")),
            **self.common_fields(row),
        )


class IciciCurrentParser(IciciParser):
    """Current account: one amount column and a ``Cr/Dr`` marker."""

    def extract(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self.build(
            amount=abs(self.parse_amount(self.value(row, "amount"))),
            transaction_type=self.type_from_marker(self.value(row, "cr_dr")) or TransactionType.DEBIT.value,
            balance=self.parse_amount(self.value(row, "balance")),
            **self.common_fields(row),
        )


class IciciCreditCardParser(IciciParser):
    """Credit card CSV: ``BillingAmountSign`` is ``CR`` for credits, blank for charges."""

    header_indicators = [
        "Sr.No.",
        "Sr.No",
        "Transaction Details",
        "Amount(in Rs)",
        "BillingAmountSign",
        "Intl.Amount",
    ]
    skip_patterns = SKIP_PATTERNS + [
        "transaction details:",
        "minimum amount due",
        "total amount due",
        "credit limit",
        "available credit",
        "statement date",
        "due date",
        "accountno",
        "customer name",
        "address",
    ]
    column_fallbacks = {
        **COLUMN_FALLBACKS,
        "date": ["Date", "Transaction Date", "Txn Date", "Posting Date"],
        "narration": ["Transaction Details", "Description", "Particulars", "Details"],
        "reference": ["Sr.No.", "Sr.No", "Reference Number", "Reference No", "Ref No"],
        "amount": ["Amount(in Rs)", "Amount (in Rs)", "Amount", "Billing Amount", "Transaction Amount"],
        "cr_dr": ["BillingAmountSign", "Billing Amount Sign", "Sign", "Cr/Dr", "Type"],
        "intl_amount": ["Intl.Amount", "Intl Amount", "International Amount"],
        "reward_points": ["Reward Point Header", "Reward Points", "Points"],
    }
    payment_indicators = (
        "payment received",
        "payment - thank you",
        "refund",
        "cashback",
        "reversal",
        "credit adjustment",
    )

    def header_row_index(self, rows: List[Row]) -> int:
        if self.parser_config.get("header_row") is not None:
            return int(self.parser_config["header_row"])
        indicators = [i.lower() for i in self.indicators]
        for idx, row in enumerate(rows[:HEADER_SCAN_ROWS]):
            cells = [str(c).strip().lower() for c in row if not _blank(c)]
            # A bare "Transaction Details:" banner precedes the real header.
            if sum(1 for cell in cells if cell in indicators) >= 2:
                return idx
        return super().header_row_index(rows)

    def is_credit(self, row: Dict[str, Any], description: str) -> bool:
        sign = self.value(row, "cr_dr")
        if not _blank(sign):
            return self.type_from_marker(sign) == TransactionType.CREDIT.value
        lowered = description.lower()
        return any(ind in lowered for ind in self.payment_indicators)

    def extract(self, row: Dict[str, Any]) -> Dict[str, Any]:
        fields = self.common_fields(row)
        raw_amount = self.value(row, "amount")
        amount = abs(self.parse_amount(raw_amount)) if not _blank(raw_amount) else 0.0
        credit = self.is_credit(row, fields["description"])
        return self.build(
            amount=amount,
            transaction_type=TransactionType.CREDIT.value if credit else TransactionType.DEBIT.value,
            balance=None,
            international_amount=self.parse_amount(self.value(row, "intl_amount")),
            reward_points=_reward_points(self.value(row, "reward_points")),
            **fields,
        )


def _reward_points(value: Any) -> Optional[int]:
    if _blank(value):
        return None
    try:
        return int(float(str(value).replace(",", "")))
    except ValueError:
        return None
