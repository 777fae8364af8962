"""State Bank of India statement parser (``Txn Date`` / ``Debit`` / ``Credit`` layout)."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from ledgerly.models.enums import TransactionType
from .base import BaseParser, Row, _blank, cell_str

SBI_DATE_FORMATS = ["%d %b %Y", "%d-%b-%Y", "%d/%m/%Y", "%d-%m-%Y"]


class SbiParser(BaseParser):
    bank_code = "sbi"
    header_indicators = ["Txn Date", "Transaction Date", "Value Date", "Description", "Debit", "Credit"]

    def header_row_index(self, rows: List[Row]) -> int:
        for idx, row in enumerate(rows[:21]):
            cells = {str(c).strip() for c in row if not _blank(c)}
            if "Txn Date" in cells or "Transaction Date" in cells:
                return idx
        return super().header_row_index(rows)

    def parse_date(self, value: Any) -> Optional[dt.date]:
        if isinstance(value, str) and value.strip():
            text = value.strip()
            for fmt in SBI_DATE_FORMATS:
                try:
                    return dt.datetime.strptime(text, fmt).date()
                except ValueError:
                    continue
        return super().parse_date(value)

    def skip_row(self, row: Row, data: Dict[str, Any]) -> bool:
        desc = str(data.get("Description") or data.get("Narration") or "").strip().lower()
        if not desc:
            return True
        return "opening balance" in desc or "closing balance" in desc or "total" in desc

    def extract(self, row: Dict[str, Any]) -> Dict[str, Any]:
        narration = self.clean_description(row.get("Description") or row.get("Narration") or row.get("Particulars"))
        reference = cell_str(row.get("Ref No./Cheque No.") or row.get("Reference") or row.get("Chq No"))
        debit = self.parse_amount(row.get("Debit") or row.get("Withdrawal"))
        credit = self.parse_amount(row.get("Credit") or row.get("Deposit"))

        if credit > 0:
            transaction_type, amount = TransactionType.CREDIT.value, credit
        else:
            transaction_type, amount = TransactionType.DEBIT.value, abs(debit)

        return self.build(
            date=self.parse_date(row.get("Txn Date") or row.get("Transaction Date") or row.get("Date")),
            description=narration,
            amount=amount,
            transaction_type=transaction_type,
            balance=self.parse_amount(row.get("Balance") or row.get("Closing Balance")),
            reference=reference,
            value_date=cell_str(row.get("Value Date")),
        )
