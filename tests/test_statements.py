# ruff: noqa: E501
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from agri_ledger.errors import EmptySelectionError
from agri_ledger.models import TransactionFilters
from agri_ledger.normalizers import normalize_farmer, normalize_financial_details, normalize_transaction
from agri_ledger.statements import (
    StatementSection,
    assemble_farmer_statement,
    assemble_transaction_statement,
    resolve_sections,
    statement_kpis,
)

GENERATED = datetime(2024, 5, 1, 9, 30, tzinfo=UTC)


@pytest.fixture
def farmer():
    return normalize_farmer(
        {
            "_id": "f1",
            "firstName": "Ada",
            "lastName": "Obi",
            "phone": "08030000000",
            "lga": "Ikom",
            "farmSizeHectares": 2.5,
            "walletBalance": 12345050,
            "walletBankName": "First Bank",
            "totalSales": 1200,
            "totalEarnings": 50000000,
            "status": "active",
            "createdAt": "2023-01-15T08:00:00Z",
        }
    )


@pytest.fixture
def details():
    return normalize_financial_details(
        {
            "wallet": {"balance": 12345050, "savingsBalance": 100000, "savingsPercentage": 10, "isActive": True},
            "outstandingLoans": [
                {"_id": "64fa00000000000000000001", "principalAmount": 5000000, "amountOutstanding": 2000000, "status": "active"}
            ],
            "recentTransactions": [
                {"_id": "t1", "amount": 250000, "type": "loan_repayment", "status": "completed", "createdAt": "2024-04-02T12:00:00Z"}
            ],
        }
    )


def test_wallet_only_selection_yields_one_section(farmer, details):
    selection = {
        "personal": False,
        "wallet": True,
        "loans": False,
        "transactions": False,
        "purchases": False,
        "sessions": False,
        "activity": False,
    }
    statement = assemble_farmer_statement(farmer, details, selection, generated_at=GENERATED)

    assert [s.title for s in statement.sections] == ["Wallet Information"]
    cells = {r["Field"]: r["Value"] for r in statement.sections[0].rows}
    assert cells["Wallet Balance"] == "₦123,450.50"
    assert cells["Savings Wallet Balance"] == "₦1,000.00"
    assert cells["Savings Percentage"] == "10%"
    assert cells["Wallet Status"] == "Active"
    assert cells["Bank Name"] == "First Bank"
    assert cells["Account Number"] == "N/A"


def test_all_false_selection_raises(farmer, details):
    with pytest.raises(EmptySelectionError):
        assemble_farmer_statement(farmer, details, dict.fromkeys(StatementSection, False))
    with pytest.raises(EmptySelectionError):
        assemble_farmer_statement(farmer, details, [])


def test_sections_follow_fixed_order_regardless_of_selection_order():
    assert resolve_sections(["activity", "wallet", "personal"]) == (
        StatementSection.PERSONAL,
        StatementSection.WALLET,
        StatementSection.ACTIVITY,
    )


def test_unknown_section_key_is_rejected():
    with pytest.raises(ValueError, match="bogus"):
        resolve_sections({"wallet": True, "bogus": False})


def test_full_statement_formats_every_cell(farmer, details):
    statement = assemble_farmer_statement(
        farmer, details, list(StatementSection), generated_at=GENERATED
    )
    titles = [s.title for s in statement.sections]
    assert titles == [
        "Personal Profile",
        "Wallet Information",
        "Outstanding Loans",
        "Recent Transactions",
        "Recent Purchases",
        "Recent USSD Sessions",
        "Account Activity",
    ]
    by_title = {s.title: s for s in statement.sections}

    personal = {r["Field"]: r["Value"] for r in by_title["Personal Profile"].rows}
    assert personal["Full Name"] == "ADA OBI"
    assert personal["LGA"] == "IKOM"
    assert personal["Farm Size"] == "2.5 hectares"

    (loan,) = by_title["Outstanding Loans"].rows
    assert loan["Loan ID"] == "64fa000000..."
    assert loan["Outstanding"] == "₦20,000.00"

    (tx,) = by_title["Recent Transactions"].rows
    assert tx == {
        "Date": "2024-04-02 12:00",
        "Type": "loan repayment",
        "Description": "N/A",
        "Status": "completed",
        "Amount": "₦2,500.00",
    }

    purchases = by_title["Recent Purchases"]
    assert purchases.rows == ()
    assert purchases.empty_message == "No purchases in this period."

    activity = {r["Field"]: r["Value"] for r in by_title["Account Activity"].rows}
    assert activity["Member Since"] == "2023-01-15"
    assert activity["Total Sales"] == "1,200"
    assert activity["Total Earnings"] == "₦500,000.00"

    assert statement.header["Generated"] == "2024-05-01 09:30"
    for block in statement.sections:
        for row in block.rows:
            assert all(isinstance(v, str) for v in row.values())


def test_statement_to_dict_is_plain_data(farmer, details):
    doc = assemble_farmer_statement(farmer, details, ["wallet"], generated_at=GENERATED).to_dict()
    assert doc["sections"][0]["title"] == "Wallet Information"
    assert doc["sections"][0]["columns"] == ["Field", "Value"]
    assert doc["header"]["Sections"] == "Wallet Information"


def _tx(tx_id, amount, tx_type, status="completed"):
    return normalize_transaction(
        {"_id": tx_id, "amount": amount, "type": tx_type, "status": status}, category="organization"
    )


def test_statement_kpis_classify_by_type_then_sign():
    rows = [
        _tx("1", 100000, "organization_funding"),
        _tx("2", 30000, "payroll_disbursement"),
        _tx("3", 5000, "bonus_transfer", status="pending"),
        _tx("4", -2000, "adjustment", status="failed"),
        _tx("5", 1000, "adjustment", status="cancelled"),
    ]
    kpis = statement_kpis(rows)
    assert kpis.total_records == 5
    assert kpis.inflow == Decimal("1010.00")
    assert kpis.outflow == Decimal("370.00")
    assert kpis.net_movement == Decimal("640.00")
    assert (kpis.completed, kpis.pending, kpis.failed, kpis.cancelled) == (2, 1, 1, 1)


def test_transaction_statement_has_kpi_and_table_per_wallet():
    sections = {
        "Payroll Wallet": [_tx("1", 100000, "organization_funding")],
        "Bonus Wallet": [],
    }
    statement = assemble_transaction_statement(
        "Wallet Statements - All Wallets",
        sections,
        TransactionFilters(status="completed", date_start="2024-01-01"),
        limit=500,
        generated_at=GENERATED,
    )

    assert [s.title for s in statement.sections] == [
        "Payroll Wallet Summary",
        "Payroll Wallet Statement",
        "Bonus Wallet Summary",
        "Bonus Wallet Statement",
    ]
    table = statement.sections[1]
    assert table.columns == (
        "Date",
        "Reference",
        "Type",
        "Status",
        "Amount",
        "Balance After",
        "Description",
    )
    assert table.rows[0]["Amount"] == "₦1,000.00"
    assert table.rows[0]["Balance After"] == "N/A"
    assert table.rows[0]["Type"] == "organization funding"
    assert statement.sections[3].empty_message == "No transactions found for this section."
    assert statement.header["Filters"] == (
        "Start: 2024-01-01 | Status: completed | Sort: createdAt DESC | Max records per section: 500"
    )


def test_missing_optional_amounts_render_as_na_not_zero(farmer):
    details = normalize_financial_details(
        {
            "recentPurchases": [
                {"_id": "pu1", "totalAmount": 500000, "status": "completed"},
                {"_id": "pu2", "totalAmount": 500000, "netAmountCredited": 0, "status": "completed"},
            ]
        }
    )
    statement = assemble_farmer_statement(farmer, details, ["purchases"], generated_at=GENERATED)
    first, second = statement.sections[0].rows
    assert first["Net Credited"] == "N/A"
    assert second["Net Credited"] == "₦0.00"
