import datetime as dt
import io
from types import SimpleNamespace

import pytest
from openpyxl import Workbook

from ledgerly.core.errors import ParseError
from ledgerly.services.bank_parsers import (
    AxisParser,
    GenericParser,
    HdfcParser,
    IciciCreditCardParser,
    IciciCurrentParser,
    IciciSavingsParser,
    SbiParser,
    parser_for,
)
from ledgerly.services.bank_parsers.base import BaseParser

from factories import HDFC_CSV


def _template(**values):
    defaults = dict(id=1, bank_code="generic", account_type="savings", parser_class=None, column_mappings={}, parser_config={})
    defaults.update(values)
    return SimpleNamespace(**defaults)


def test_parser_resolution():
    assert parser_for(None) is GenericParser
    assert parser_for(_template(parser_class="hdfc")) is HdfcParser
    assert parser_for(_template(parser_class="ledgerly.services.bank_parsers.SbiParser")) is SbiParser
    assert parser_for(_template(bank_code="sbi")) is SbiParser
    assert parser_for(_template(bank_code="icici")) is IciciSavingsParser
    assert parser_for(_template(bank_code="icici", account_type="current")) is IciciCurrentParser
    assert parser_for(_template(bank_code="icici", account_type="credit_card")) is IciciCreditCardParser
    assert parser_for(_template(parser_class="IciciCreditCardParser")) is IciciCreditCardParser
    assert parser_for(_template(bank_code="axis", account_type="current")) is AxisParser
    assert parser_for(_template(bank_code="kotak")) is GenericParser
    assert parser_for(_template(parser_class="nope")) is GenericParser


def test_parse_amount_variants():
    assert BaseParser.parse_amount("1,234.50") == 1234.5
    assert BaseParser.parse_amount("(1,234.50)") == -1234.5
    assert BaseParser.parse_amount("-50") == -50.0
    assert BaseParser.parse_amount("₹ 1,000") == 1000.0
    assert BaseParser.parse_amount("n/a") == 0.0
    assert BaseParser.parse_amount(None) == 0.0


def test_parse_date_formats_and_excel_serials():
    parser = GenericParser(b"", "csv", _template(parser_config={"date_format": "%d-%m-%Y"}))
    assert parser.parse_date("05-09-2026") == dt.date(2026, 9, 5)
    assert parser.parse_date("2026-09-05") == dt.date(2026, 9, 5)
    assert parser.parse_date(46270) == dt.date(2026, 9, 5)
    assert parser.parse_date("someday") is None


def test_hdfc_csv_skips_banner_separator_and_summary():
    rows = HdfcParser(HDFC_CSV, "csv", _template(bank_code="hdfc", parser_class="hdfc")).parse()

    assert len(rows) == 2
    debit, credit = rows
    assert debit["transaction_date"] == dt.date(2026, 9, 5)
    assert debit["transaction_type"] == "debit"
    assert debit["amount"] == 450.0
    assert debit["balance"] == 12550.0
    assert debit["reference"] == "0000123456"
    assert debit["metadata"]["bank"] == "hdfc"
    assert debit["metadata"]["value_date"] == "05/09/26"
    assert credit["transaction_type"] == "credit"
    assert credit["amount"] == 85000.0


def test_generic_parser_guesses_headers():
    content = b"Date,Description,Debit,Credit,Balance\n2026-09-01,Coffee,120.50,,1000\n2026-09-02,Refund,,50,1050\n"
    rows = GenericParser(content, "csv").parse()
    assert [(r["description"], r["transaction_type"], r["amount"]) for r in rows] == [
        ("Coffee", "debit", 120.5),
        ("Refund", "credit", 50.0),
    ]


def test_generic_parser_with_amount_and_cr_dr_mapping():
    template = _template(
        bank_code="hdfc",
        account_type="credit_card",
        column_mappings={
            "date": "Date",
            "description": "Transaction Description",
            "amount": "Amount",
            "cr_dr": "Debit / Credit",
        },
        parser_config={"date_format": "%d/%m/%Y"},
    )
    content = (
        b"Date,Transaction Description,Amount,Debit / Credit\n"
        b"01/09/2026,AMAZON,1299.00,Dr\n"
        b"03/09/2026,PAYMENT RECEIVED,5000.00,Cr\n"
    )
    rows = GenericParser(content, "csv", template).parse()
    assert [(r["transaction_type"], r["amount"]) for r in rows] == [("debit", 1299.0), ("credit", 5000.0)]
    assert rows[0]["metadata"]["account_type"] == "credit_card"


def test_sbi_xlsx():
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Account Name", "ASHA"])
    sheet.append(["Txn Date", "Value Date", "Description", "Ref No./Cheque No.", "Debit", "Credit", "Balance"])
    sheet.append(["01 Sep 2026", "01 Sep 2026", "ATM WDL SBI MG ROAD", "123", 2000, None, 8000])
    sheet.append([dt.datetime(2026, 9, 3), "03 Sep 2026", "BY TRANSFER SALARY", None, None, 50000, 58000])
    sheet.append([None, None, "Closing Balance", None, None, None, 58000])
    buffer = io.BytesIO()
    workbook.save(buffer)

    rows = SbiParser(buffer.getvalue(), "xlsx", _template(bank_code="sbi")).parse()
    assert [(r["transaction_date"], r["transaction_type"], r["amount"]) for r in rows] == [
        (dt.date(2026, 9, 1), "debit", 2000.0),
        (dt.date(2026, 9, 3), "credit", 50000.0),
    ]


@pytest.mark.parametrize("file_type", ["xls", "pdf", "docx"])
def test_unsupported_formats_are_rejected(file_type):
    with pytest.raises(ParseError):
        GenericParser(b"whatever", file_type).parse()


ICICI_SAVINGS_CSV = b"""DETAILED STATEMENT
Transactions List - ASHA RAO (INR) - 000401234567
S No.,Value Date,Transaction Date,Cheque Number,Transaction Remarks,Withdrawal Amount (INR ),Deposit Amount (INR ),Balance (INR )
1,05/09/2026,04/09/2026,,UPI/SWIGGY/swiggy@icici/food,450.00,0.00,"12,550.00"
2,05/09/2026,05/09/2026,004512,NEFT-ACME CORP SALARY,0.00,"85,000.00","97,550.00"
,,,,Opening Balance,,,"13,000.00"
"""


def test_icici_savings_uses_template_columns_and_skips_summary():
    template = _template(
        bank_code="icici",
        column_mappings={
            "date": "Transaction Date",
            "narration": "Transaction Remarks",
            "reference": "Cheque Number",
            "withdrawal": "Withdrawal Amount (INR )",
            "deposit": "Deposit Amount (INR )",
            "balance": "Balance (INR )",
        },
        parser_config={"date_format": "%d/%m/%Y"},
    )
    rows = parser_for(template)(ICICI_SAVINGS_CSV, "csv", template).parse()

    assert len(rows) == 2
    debit, credit = rows
    assert debit["transaction_date"] == dt.date(2026, 9, 4)
    assert (debit["transaction_type"], debit["amount"], debit["balance"]) == ("debit", 450.0, 12550.0)
    assert debit["reference"] is None
    assert (credit["transaction_type"], credit["amount"]) == ("credit", 85000.0)
    assert credit["reference"] == "004512"
    assert credit["metadata"]["bank"] == "icici"


def test_icici_current_reads_cr_dr_marker():
    content = (
        b"Account Number,000405001234\n"
        b"Transaction Date,Transaction Remarks,Transaction Amount(INR),Cr/Dr,Balance(INR)\n"
        b'01-09-2026,RTGS ZETA TRADERS,"1,50,000.00",CR,"2,50,000.00"\n'
        b"02-09-2026,CHQ PAID 000321 VENDOR,25000,DR,225000\n"
    )
    template = _template(bank_code="icici", account_type="current", parser_config={"date_formats": ["%d-%m-%Y"]})
    rows = IciciCurrentParser(content, "csv", template).parse()

    assert [(r["transaction_date"], r["transaction_type"], r["amount"], r["balance"]) for r in rows] == [
        (dt.date(2026, 9, 1), "credit", 150000.0, 250000.0),
        (dt.date(2026, 9, 2), "debit", 25000.0, 225000.0),
    ]


def test_icici_credit_card_sign_column_and_reward_points():
    content = (
        b"Customer Name,ASHA RAO\n"
        b"Transaction Details:\n"
        b"Date,Sr.No.,Transaction Details,Reward Point Header,Intl.Amount,Amount(in Rs),BillingAmountSign\n"
        b'03/09/2026,7781,AMAZON PAY INDIA,12,0,"1,299.00",\n'
        b'06/09/2026,7782,PAYMENT RECEIVED - THANK YOU,0,0,"5,000.00",CR\n'
        b',,Total Amount Due,,,"1,299.00",\n'
    )
    template = _template(bank_code="icici", account_type="credit_card")
    rows = IciciCreditCardParser(content, "csv", template).parse()

    assert len(rows) == 2
    purchase, payment = rows
    assert purchase["transaction_date"] == dt.date(2026, 9, 3)
    assert (purchase["transaction_type"], purchase["amount"]) == ("debit", 1299.0)
    assert purchase["balance"] is None
    assert purchase["reference"] == "7781"
    assert purchase["metadata"]["reward_points"] == 12
    assert purchase["metadata"]["account_type"] == "credit_card"
    assert (payment["transaction_type"], payment["amount"]) == ("credit", 5000.0)


def test_axis_csv():
    content = (
        b"Name :- ASHA RAO\n"
        b"Tran Date,CHQNO,PARTICULARS,DR,CR,BAL,SOL\n"
        b'01-09-2026,,OPENING BALANCE,,,"10,000.00",\n'
        b'02-09-2026,,UPI/P2M/ZOMATO/food,350.00,,"9,650.00",123\n'
        b'03-09-2026,4521,NEFT/ACME CORP/SALARY,,"60,000.00","69,650.00",123\n'
        b',,TRANSACTION TOTAL,350.00,"60,000.00",,\n'
    )
    template = _template(bank_code="axis", parser_config={"date_format": "%d-%m-%Y"})
    rows = AxisParser(content, "csv", template).parse()

    assert [(r["transaction_date"], r["description"], r["transaction_type"], r["amount"]) for r in rows] == [
        (dt.date(2026, 9, 2), "UPI/P2M/ZOMATO/food", "debit", 350.0),
        (dt.date(2026, 9, 3), "NEFT/ACME CORP/SALARY", "credit", 60000.0),
    ]
    assert rows[0]["balance"] == 9650.0
    assert rows[1]["reference"] == "4521"
