"""Column-mapping driven parser used for any bank without a dedicated parser."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .base import BaseParser, Row, cell_str, find_header_row

# Logical field -> accepted mapping keys, in lookup order.
FIELD_KEYS = {
    "date": ("date", "transaction_date", "txn_date"),
    "description": ("narration", "description", "particulars"),
    "reference": ("reference", "chq_no", "ref_no"),
    "withdrawal": ("withdrawal", "debit", "dr"),
    "deposit": ("deposit", "credit", "cr"),
    "amount": ("amount",),
    "cr_dr": ("cr_dr",),
    "balance": ("balance", "closing_balance"),
}

# Used when a template has no column mappings: header names are matched
# case-insensitively against these.
HEADER_GUESSES = {
    "date": ("date", "txn date", "transaction date", "value date"),
    "description": ("description", "narration", "particulars", "details", "remarks"),
    "reference": ("reference", "ref no", "chq no", "cheque no"),
    "withdrawal": ("debit", "withdrawal", "dr", "withdrawal amt"),
    "deposit": ("credit", "deposit", "cr", "deposit amt"),
    "amount": ("amount",),
    "cr_dr": ("cr/dr", "dr/cr", "type"),
    "balance": ("balance", "closing balance"),
}


class GenericParser(BaseParser):
    bank_code = "generic"

    def __init__(self, content: bytes, file_type: str, template=None):
        super().__init__(content, file_type, template)
        self._columns: Optional[Dict[str, Optional[str]]] = None

    def header_row_index(self, rows: List[Row]) -> int:
        configured = self.parser_config.get("header_row")
        if configured is not None:
            return int(configured)
        skip_rows = int(self.parser_config.get("skip_rows") or 0)
        mappings = self.column_mappings
        indicators = [mappings.get("date"), mappings.get("narration"), mappings.get("description")]
        indicators += ["date", "transaction", "narration"]
        return max(find_header_row(rows, [i for i in indicators if i]), skip_rows)

    def columns(self, row: Dict[str, Any]) -> Dict[str, Optional[str]]:
        """Resolve logical fields to header names once per file."""
        if self._columns is not None:
            return self._columns
        mappings = self.column_mappings
        if mappings:
            resolved = {
                field: next((mappings[k] for k in keys if mappings.get(k)), None)
                for field, keys in FIELD_KEYS.items()
            }
        else:
            by_lower = {h.lower(): h for h in row}
            resolved = {
                field: next((by_lower[g] for g in guesses if g in by_lower), None)
                for field, guesses in HEADER_GUESSES.items()
            }
        self._columns = resolved
        return resolved

    def extract(self, row: Dict[str, Any]) -> Dict[str, Any]:
        cols = self.columns(row)
        description = self.clean_description(row.get(cols["description"]) if cols["description"] else None)
        balance_col = cols["balance"]
        return self.build(
            date=self.parse_date(row.get(cols["date"])) if cols["date"] else None,
            description=description,
            amount=self.get_amount(row, cols["withdrawal"], cols["deposit"], cols["amount"]),
            transaction_type=self.determine_transaction_type(
                row, cols["withdrawal"], cols["deposit"], cols["cr_dr"], cols["amount"]
            ),
            balance=self.parse_amount(row.get(balance_col)) if balance_col else None,
            reference=cell_str(row.get(cols["reference"])) if cols["reference"] else None,
        )
