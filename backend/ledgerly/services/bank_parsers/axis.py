"""Axis Bank statement parser (``Tran Date`` / ``PARTICULARS`` / ``DR`` / ``CR`` / ``BAL``)."""

from __future__ import annotations

from typing import Any, Dict, List

from ledgerly.models.enums import TransactionType
from .base import BaseParser, Row, _blank, cell_str, find_header_row

SUMMARY_MARKERS = ("opening balance", "closing balance", "total")


class AxisParser(BaseParser):
    bank_code = "axis"
    header_indicators = ["Tran Date", "PARTICULARS", "DR", "CR", "BAL"]

    def header_row_index(self, rows: List[Row]) -> int:
        if self.parser_config.get("header_row") is not None:
            return int(self.parser_config["header_row"])
        for idx, row in enumerate(rows[:21]):
            cells = {str(c).strip() for c in row if not _blank(c)}
            if "Tran Date" in cells or "PARTICULARS" in cells:
                return idx
        return find_header_row(rows, self.header_indicators)

    @staticmethod
    def particulars(row: Dict[str, Any]) -> Any:
        return row.get("PARTICULARS") or row.get("Particulars") or row.get("Description")

    def skip_row(self, row: Row, data: Dict[str, Any]) -> bool:
        text = str(self.particulars(data) or "").strip().lower()
        if not text:
            return True
        return any(marker in text for marker in SUMMARY_MARKERS)

    def extract(self, row: Dict[str, Any]) -> Dict[str, Any]:
        debit = self.parse_amount(row.get("DR") or row.get("Debit"))
        credit = self.parse_amount(row.get("CR") or row.get("Credit"))
        if credit > 0:
            transaction_type, amount = TransactionType.CREDIT.value, credit
        else:
            transaction_type, amount = TransactionType.DEBIT.value, abs(debit)

        return self.build(
            date=self.parse_date(row.get("Tran Date") or row.get("Transaction Date") or row.get("Date")),
            description=self.clean_description(self.particulars(row)),
            amount=amount,
            transaction_type=transaction_type,
            balance=self.parse_amount(row.get("BAL") or row.get("Balance")),
            reference=cell_str(row.get("CHQNO") or row.get("Cheque No") or row.get("Reference")),
        )
