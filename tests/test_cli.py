# ruff: noqa: E501
import json

import pytest
from typer.testing import CliRunner

from agri_ledger import cli
from agri_ledger.errors import TransportError
from tests.helpers.transport_stub import FakeTransport, by_page, page_body, wallet_tx

runner = CliRunner()


@pytest.fixture
def transport(monkeypatch: pytest.MonkeyPatch) -> FakeTransport:
    fake = FakeTransport()
    monkeypatch.setattr(cli, "_make_transport", lambda: fake)
    return fake


def test_transactions_json(transport):
    transport.add(
        "/admin/transactions/wallet",
        page_body([wallet_tx("w1", 150000), {"amount": 1}], total=2, page=1, total_pages=1),
    )

    result = runner.invoke(cli.app, ["transactions", "--category", "wallet", "--json", "--page-size", "5"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["category"] == "wallet"
    assert payload["skipped_count"] == 1
    assert payload["rows"][0]["amount_major"] == "1500.00"
    assert transport.calls_for("/admin/transactions/wallet")[0]["limit"] == "5"
    assert transport.closed is True


def test_transactions_fetch_error_exits_1(transport):
    transport.add("/admin/transactions", TransportError(502, "bad gateway"))
    result = runner.invoke(cli.app, ["transactions", "--json"])
    assert result.exit_code == 1
    assert "bad gateway" in result.output


def test_transactions_rejects_inverted_date_range(transport):
    result = runner.invoke(
        cli.app, ["transactions", "--start-date", "2024-02-01", "--end-date", "2024-01-01"]
    )
    assert result.exit_code == 1
    assert transport.calls == []


def test_payrolls_json(transport):
    transport.add(
        "/payroll",
        {"data": {"payrolls": [{"_id": "pr1", "periodLabel": "March 2024", "totalNetAmount": 900000}]}},
    )
    result = runner.invoke(cli.app, ["payrolls", "--json"])
    assert result.exit_code == 0, result.output
    (row,) = json.loads(result.stdout)
    assert row["period_label"] == "March 2024"
    assert row["total_net_amount"] == "9000.00"


def test_farmer_statement_writes_json(transport, tmp_path):
    transport.add("/admins/farmers/f1", {"data": {"_id": "f1", "fullName": "Ada Obi"}})
    transport.add(
        "/admin/transactions/farmer/f1/financial-status",
        {"data": {"wallet": {"balance": 500000, "isActive": True}}},
    )
    out = tmp_path / "statement.json"

    result = runner.invoke(
        cli.app, ["farmer-statement", "f1", "--section", "wallet", "--out", str(out)]
    )

    assert result.exit_code == 0, result.output
    doc = json.loads(out.read_text(encoding="utf-8"))
    assert [s["title"] for s in doc["sections"]] == ["Wallet Information"]
    assert doc["title"] == "Farmer Statement - ADA OBI"


def test_farmer_statement_without_sections_fails_before_fetching(transport):
    result = runner.invoke(cli.app, ["farmer-statement", "f1"])
    assert result.exit_code == 1
    assert "select at least one statement section" in result.output
    assert transport.calls == []


def test_wallet_statement_collects_all_pages(transport, tmp_path):
    bodies = {
        1: page_body([wallet_tx("a", 100, tx_type="organization_funding")], page=1, total_pages=2),
        2: page_body([wallet_tx("b", 50, tx_type="payroll_disbursement")], page=2, total_pages=2),
    }
    transport.add("/admin/transactions/organization", by_page(bodies))
    out = tmp_path / "wallet.json"

    result = runner.invoke(
        cli.app, ["wallet-statement", "--wallet-type", "payroll", "--out", str(out)]
    )

    assert result.exit_code == 0, result.output
    doc = json.loads(out.read_text(encoding="utf-8"))
    assert doc["title"] == "Wallet Statement - Payroll Wallet"
    summary, table = doc["sections"]
    kpis = {r["Field"]: r["Value"] for r in summary["rows"]}
    assert kpis["Total Records"] == "2"
    assert kpis["Net Movement"] == "₦0.50"
    assert len(table["rows"]) == 2
    calls = transport.calls_for("/admin/transactions/organization")
    assert {c["walletType"] for c in calls} == {"payroll"}
    assert [c["page"] for c in calls] == ["1", "2"]


def test_wallet_statement_rejects_unknown_wallet(transport):
    result = runner.invoke(cli.app, ["wallet-statement", "--wallet-type", "savings"])
    assert result.exit_code == 1
    assert transport.calls == []


def test_missing_api_url_is_reported():
    result = runner.invoke(cli.app, ["payrolls"])
    assert result.exit_code == 1
    assert "AGRI_LEDGER_API_URL" in result.output


def test_transactions_table_uses_naira_amounts(transport):
    transport.add("/admin/transactions/wallet", page_body([wallet_tx("w1", 150000)], total=1))
    result = runner.invoke(cli.app, ["transactions", "--category", "wallet"])
    assert result.exit_code == 0, result.output
    assert "₦1,500.00" in result.stdout
