"""HDFC Bank savings statement parser.

NetBanking exports start with several lines of account details, then a
header row containing ``Date`` and ``Narration``, a line of asterisks,
the transactions and finally a statement summary block.
"""

from __future__ import annotations

from typing import Any, Dict, List

from ledgerly.models.enums import TransactionType
from .base import BaseParser, Row, _blank, cell_str

SUMMARY_MARKERS = ("opening balance", "closing balance", "total", "statement summary")


class HdfcParser(BaseParser):
    bank_code = "hdfc"
    header_indicators = ["Narration"]

    def header_row_index(self, rows: List[Row]) -> int:
        for idx, row in enumerate(rows[:21]):
            cells = {str(c).strip() for c in row if not _blank(c)}
            if "Narration" in cells and any(c.startswith("Date") for c in cells):
                return idx
        return super().header_row_index(rows)

    @property
    def parser_config(self) -> Dict[str, Any]:
        config = super().parser_config
        config.setdefault("date_format", "%d/%m/%y")
        return config

    def skip_row(self, row: Row, data: Dict[str, Any]) -> bool:
        first = next((str(c).strip() for c in row if not _blank(c)), "")
        if first and set(first) <= {"*"}:
            return True
        if sum(1 for c in row if not _blank(c)) < 3:
            return True
        narration = str(data.get("Narration") or "").lower()
        return any(marker in narration for marker in SUMMARY_MARKERS)

    def extract(self, row: Dict[str, Any]) -> Dict[str, Any]:
        narration = self.clean_description(row.get("Narration"))
        reference = cell_str(row.get("Chq./Ref.No.")) or cell_str(row.get("Chq./Ref. No."))
        withdrawal = self.parse_amount(row.get("Withdrawal Amt.") or row.get("Withdrawal Amount") or row.get("Dr"))
        deposit = self.parse_amount(row.get("Deposit Amt.") or row.get("Deposit Amount") or row.get("Cr"))

        if deposit > 0:
            transaction_type, amount = TransactionType.CREDIT.value, deposit
        else:
            transaction_type, amount = TransactionType.DEBIT.value, abs(withdrawal)

        return self.build(
            date=self.parse_date(row.get("Date")),
            description=narration,
            amount=amount,
            transaction_type=transaction_type,
            balance=self.parse_amount(row.get("Closing Balance") or row.get("Balance")),
            reference=reference,
            value_date=cell_str(row.get("Value Dt")),
        )
