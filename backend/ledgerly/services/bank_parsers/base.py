"""Shared helpers for bank statement parsers.

A parser turns the raw bytes of one statement export into plain dicts
ready to become ``Transaction`` rows::

    {
        "transaction_date": date(2024, 1, 5),
        "description": "UPI/ZOMATO/...",
        "original_description": "UPI/ZOMATO/...",
        "amount": 450.0,
        "transaction_type": "debit",
        "balance": 12034.5,
        "reference": "0000123",
        "metadata": {...},
    }

CSV files are read with the standard ``csv`` module and ``.xlsx`` files
with ``openpyxl``; both are reduced to a list of rows first so header
detection and row extraction are shared. Legacy ``.xls`` workbooks and
PDFs are rejected.
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Sequence

from openpyxl import load_workbook

from ledgerly.core.errors import ParseError
from ledgerly.models.enums import FileFormat, TransactionType
from ledgerly.utils.helpers import truncate

logger = logging.getLogger(__name__)

DEFAULT_DATE_FORMAT = "%d/%m/%Y"
FALLBACK_DATE_FORMATS = [
    "%d/%m/%Y", "%d-%m-%Y", "%d/%m/%y", "%d-%m-%y",
    "%Y-%m-%d", "%d %b %Y", "%d-%b-%Y", "%d %B %Y",
    "%m/%d/%Y", "%Y/%m/%d",
]
EXCEL_EPOCH = dt.date(1899, 12, 30)
HEADER_SCAN_ROWS = 20
DESCRIPTION_MAX = 500

Row = Sequence[Any]


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class BaseParser:
    """Base class; subclasses implement :meth:`extract` and header detection."""

    bank_code: str = "generic"
    header_indicators: List[str] = []

    def __init__(self, content: bytes, file_type: str, template=None):
        self.content = content or b""
        self.file_type = (file_type or "").lower()
        self.template = template
        self.errors: List[str] = []

    # Template accessors --------------------------------------------------

    @property
    def column_mappings(self) -> Dict[str, str]:
        return dict(getattr(self.template, "column_mappings", None) or {})

    @property
    def parser_config(self) -> Dict[str, Any]:
        return dict(getattr(self.template, "parser_config", None) or {})

    def base_metadata(self) -> Dict[str, Any]:
        return {
            "bank": getattr(self.template, "bank_code", None) or self.bank_code,
            "account_type": getattr(self.template, "account_type", None),
            "source": "statement_import",
            "template_id": getattr(self.template, "id", None),
        }

    # Entry points ----------------------------------------------------------

    def parse(self) -> List[Dict[str, Any]]:
        return list(self.iter_transactions())

    def iter_transactions(self) -> Iterator[Dict[str, Any]]:
        rows = self.read_rows()
        if not rows:
            return
        header_idx = self.header_row_index(rows)
        headers = [str(h).strip() if not _blank(h) else None for h in rows[header_idx]]
        self.on_headers(headers)
        for line_no, row in enumerate(rows[header_idx + 1 :], start=header_idx + 2):
            if all(_blank(cell) for cell in row):
                continue
            data = self.row_to_dict(row, headers)
            if self.skip_row(row, data):
                continue
            try:
                tx = self.extract(data)
            except (ValueError, TypeError) as exc:
                logger.warning("%s row %d skipped: %s", type(self).__name__, line_no, exc)
                continue
            if self.valid_row(tx):
                yield tx

    def read_rows(self) -> List[List[Any]]:
        if self.file_type == FileFormat.CSV.value:
            return self.read_csv_rows()
        if self.file_type == FileFormat.XLSX.value:
            return self.read_xlsx_rows()
        if self.file_type == FileFormat.XLS.value:
            raise ParseError("Legacy .xls workbooks are not supported; save the file as .xlsx or .csv")
        if self.file_type == FileFormat.PDF.value:
            raise ParseError("PDF statements are not supported; download the CSV or Excel export")
        raise ParseError(f"Unsupported file format: {self.file_type or 'unknown'}")

    def read_csv_rows(self) -> List[List[Any]]:
        encoding = self.parser_config.get("encoding", "utf-8-sig")
        try:
            text = self.content.decode(encoding)
        except UnicodeDecodeError:
            text = self.content.decode("latin-1")
        try:
            return [row for row in csv.reader(io.StringIO(text), skipinitialspace=True)]
        except csv.Error as exc:
            raise ParseError(f"CSV parsing error: {exc}") from exc

    def read_xlsx_rows(self) -> List[List[Any]]:
        try:
            workbook = load_workbook(io.BytesIO(self.content), read_only=True, data_only=True)
        except Exception as exc:
            raise ParseError(f"XLSX parsing error: {exc}") from exc
        try:
            sheet = workbook.worksheets[0]
            return [list(row) for row in sheet.iter_rows(values_only=True)]
        finally:
            workbook.close()

    # Hooks ---------------------------------------------------------------

    def header_row_index(self, rows: List[Row]) -> int:
        configured = self.parser_config.get("header_row")
        if configured is not None:
            return int(configured)
        return find_header_row(rows, self.header_indicators)

    def on_headers(self, headers: Sequence[Optional[str]]) -> None:
        """Called once with the detected header row before any data row."""

    def skip_row(self, row: Row, data: Dict[str, Any]) -> bool:
        return False

    def extract(self, row: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    # Helpers ---------------------------------------------------------------

    def parse_date(self, value: Any) -> Optional[dt.date]:
        if _blank(value):
            return None
        if isinstance(value, dt.datetime):
            return value.date()
        if isinstance(value, dt.date):
            return value
        if isinstance(value, (int, float)):
            return EXCEL_EPOCH + dt.timedelta(days=int(value))
        text = str(value).strip()
        formats = [self.parser_config.get("date_format") or DEFAULT_DATE_FORMAT] + FALLBACK_DATE_FORMATS
        for fmt in formats:
            try:
                return dt.datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        logger.debug("Unparseable date %r", value)
        return None

    @staticmethod
    def parse_amount(value: Any) -> float:
        if _blank(value):
            return 0.0
        if isinstance(value, (int, float)):
            return abs(float(value))
        text = str(value)
        cleaned = re.sub(r"[₹$,\s()]", "", text)
        cleaned = cleaned.replace("-", "")
        try:
            amount = abs(float(cleaned))
        except ValueError:
            return 0.0
        return -amount if ("-" in text or "(" in text) else amount

    def get_amount(self, row: Dict[str, Any], withdrawal_col, deposit_col, amount_col=None) -> float:
        if amount_col and not _blank(row.get(amount_col)):
            return abs(self.parse_amount(row.get(amount_col)))
        withdrawal = self.parse_amount(row.get(withdrawal_col)) if withdrawal_col else 0.0
        deposit = self.parse_amount(row.get(deposit_col)) if deposit_col else 0.0
        return max(abs(withdrawal), abs(deposit))

    def determine_transaction_type(
        self, row: Dict[str, Any], withdrawal_col, deposit_col, cr_dr_col=None, amount_col=None
    ) -> str:
        if cr_dr_col and not _blank(row.get(cr_dr_col)):
            marker = str(row[cr_dr_col]).strip().lower()
            if marker.startswith("cr") or marker == "c":
                return TransactionType.CREDIT.value
            if marker.startswith("dr") or marker == "d":
                return TransactionType.DEBIT.value
        if amount_col and not _blank(row.get(amount_col)) and self.parse_amount(row.get(amount_col)) < 0:
            return TransactionType.DEBIT.value
        deposit = self.parse_amount(row.get(deposit_col)) if deposit_col else 0.0
        if deposit > 0:
            return TransactionType.CREDIT.value
        return TransactionType.DEBIT.value

    @staticmethod
    def clean_description(value: Any) -> str:
        if _blank(value):
            return ""
        return truncate(re.sub(r"\s+", " ", str(value)).strip(), DESCRIPTION_MAX)

    @staticmethod
    def row_to_dict(row: Row, headers: Sequence[Optional[str]]) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for idx, header in enumerate(headers):
            if header:
                data[header] = row[idx] if idx < len(row) else None
        return data

    @staticmethod
    def valid_row(tx: Dict[str, Any]) -> bool:
        if not tx.get("transaction_date"):
            return False
        return (tx.get("amount") or 0) > 0 or bool(tx.get("original_description"))

    def build(
        self,
        date: Optional[dt.date],
        description: str,
        amount: float,
        transaction_type: str,
        balance: Optional[float] = None,
        reference: Optional[str] = None,
        **extra_meta: Any,
    ) -> Dict[str, Any]:
        meta = self.base_metadata()
        meta.update({k: v for k, v in extra_meta.items() if v is not None})
        return {
            "transaction_date": date,
            "original_description": description,
            "description": truncate(description, 250),
            "amount": amount,
            "transaction_type": transaction_type,
            "balance": balance,
            "reference": reference or None,
            "metadata": meta,
        }


def find_header_row(rows: List[Row], indicators: Sequence[str]) -> int:
    """Index of the first row (within the first 20) mentioning an indicator."""
    lowered = [i.lower() for i in indicators if i]
    if not lowered:
        return 0
    for idx, row in enumerate(rows[: HEADER_SCAN_ROWS + 1]):
        text = " ".join(str(c) for c in row if not _blank(c)).lower()
        if any(ind in text for ind in lowered):
            return idx
    return 0


def cell_str(value: Any) -> Optional[str]:
    if _blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()
