"""Statement assembly: normalized records → ordered sections of string rows.

The output is a plain document for a report renderer (PDF, print, terminal
table). Every cell is already a string and every monetary cell has been
formatted with :func:`agri_ledger.money.format_naira`, so renderers never deal
with units or decimals. Nothing here performs I/O.

Two document kinds are produced:

- Farmer statements (:func:`assemble_farmer_statement`): up to seven fixed
  sections selected by the caller, always emitted in :class:`StatementSection`
  order regardless of selection order.
- Wallet/transaction statements (:func:`assemble_transaction_statement`): one
  KPI block and one transaction table per wallet section.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, TypeAlias

from .ctv import CanonicalTransaction, Status
from .errors import EmptySelectionError
from .models import Farmer, FinancialDetails, TransactionFilters
from .money import format_naira

StatementRow: TypeAlias = dict[str, str]


class StatementSection(StrEnum):
    PERSONAL = "personal"
    WALLET = "wallet"
    LOANS = "loans"
    TRANSACTIONS = "transactions"
    PURCHASES = "purchases"
    SESSIONS = "sessions"
    ACTIVITY = "activity"


SECTION_TITLES: dict[StatementSection, str] = {
    StatementSection.PERSONAL: "Personal Profile",
    StatementSection.WALLET: "Wallet Information",
    StatementSection.LOANS: "Outstanding Loans",
    StatementSection.TRANSACTIONS: "Recent Transactions",
    StatementSection.PURCHASES: "Recent Purchases",
    StatementSection.SESSIONS: "Recent USSD Sessions",
    StatementSection.ACTIVITY: "Account Activity",
}

OUTFLOW_TYPES = frozenset(
    {
        "withdrawal",
        "purchase",
        "loan_disbursement",
        "payroll_disbursement",
        "bonus_transfer",
        "escrow_hold",
    }
)
INFLOW_TYPES = frozenset(
    {
        "deposit",
        "sale",
        "loan_repayment",
        "savings_deposit",
        "escrow_release",
        "organization_funding",
        "bonus_wallet_funding",
        "bonus_allocation",
    }
)

TRANSACTION_COLUMNS = (
    "Date",
    "Reference",
    "Type",
    "Status",
    "Amount",
    "Balance After",
    "Description",
)

ORGANIZATION_WALLET_LABELS: dict[str, str] = {
    "payroll": "Payroll Wallet",
    "bonus": "Bonus Wallet",
    "withdrawer": "Withdrawer Wallet",
    "purchase": "Purchase Wallet",
}

_FIELD_VALUE_COLUMNS = ("Field", "Value")
_SECTION_KEYS = frozenset(s.value for s in StatementSection)


@dataclass(frozen=True, slots=True)
class SectionBlock:
    title: str
    rows: tuple[StatementRow, ...]
    empty_message: str | None = None
    columns: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "columns": list(self.columns),
            "rows": [dict(r) for r in self.rows],
            "empty_message": self.empty_message,
        }


@dataclass(frozen=True, slots=True)
class Statement:
    title: str
    header: dict[str, str]
    sections: tuple[SectionBlock, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "header": dict(self.header),
            "sections": [s.to_dict() for s in self.sections],
        }


# ---------------------------------------------------------------------------
# Cell formatting
# ---------------------------------------------------------------------------


def _text(v: object | None, default: str = "N/A") -> str:
    if v is None:
        return default
    s = str(v).strip()
    return s or default


def _money_or_na(v: Decimal | None) -> str:
    return "N/A" if v is None else format_naira(v)


def _datetime_cell(v: datetime | None) -> str:
    return v.strftime("%Y-%m-%d %H:%M") if v is not None else "N/A"


def _date_cell(v: datetime | None) -> str:
    return v.strftime("%Y-%m-%d") if v is not None else "N/A"


def _count_cell(n: int) -> str:
    return f"{n:,}"


def _type_cell(transaction_type: str) -> str:
    return transaction_type.replace("_", " ") if transaction_type else "N/A"


def _field_rows(pairs: Iterable[tuple[str, str]]) -> tuple[StatementRow, ...]:
    return tuple({"Field": k, "Value": v} for k, v in pairs)


# ---------------------------------------------------------------------------
# Section selection
# ---------------------------------------------------------------------------


def resolve_sections(
    selection: Mapping[str, bool] | Iterable[str | StatementSection],
) -> tuple[StatementSection, ...]:
    """Return the enabled sections in fixed statement order.

    ``selection`` is either a mapping of section key to flag or an iterable of
    section keys. Unknown keys raise ``ValueError``; an empty result raises
    :class:`EmptySelectionError`.
    """

    if isinstance(selection, Mapping):
        requested = {k for k, enabled in selection.items() if enabled}
        keys = list(selection)
    else:
        keys = list(selection)
        requested = set(keys)

    unknown = sorted(str(k) for k in keys if str(k) not in _SECTION_KEYS)
    if unknown:
        raise ValueError(f"unknown statement section(s): {', '.join(unknown)}")

    enabled = {StatementSection(str(k)) for k in requested}
    ordered = tuple(s for s in StatementSection if s in enabled)
    if not ordered:
        raise EmptySelectionError()
    return ordered


# ---------------------------------------------------------------------------
# Farmer statement
# ---------------------------------------------------------------------------


def _personal(farmer: Farmer, details: FinancialDetails) -> SectionBlock:
    farm_size = (
        f"{farmer.farm_size_hectares} hectares" if farmer.farm_size_hectares is not None else "N/A"
    )
    return SectionBlock(
        title=SECTION_TITLES[StatementSection.PERSONAL],
        columns=_FIELD_VALUE_COLUMNS,
        rows=_field_rows(
            [
                ("Full Name", farmer.full_name.upper()),
                ("Phone Number", _text(farmer.phone)),
                ("LGA", _text(farmer.lga).upper()),
                ("Farm Size", farm_size),
                ("Status", _text(farmer.status)),
            ]
        ),
    )


def _wallet(farmer: Farmer, details: FinancialDetails) -> SectionBlock:
    wallet = details.wallet
    balance = farmer.wallet_balance
    if balance is None and wallet is not None:
        balance = wallet.balance
    savings_pct = "N/A"
    if wallet is not None and wallet.savings_percentage is not None:
        savings_pct = f"{wallet.savings_percentage}%"
    bank = farmer.wallet_bank_name or (wallet.bank_name if wallet else None)
    number = farmer.wallet_account_number or (wallet.account_number if wallet else None)
    name = farmer.wallet_account_name or (wallet.account_name if wallet else None)
    return SectionBlock(
        title=SECTION_TITLES[StatementSection.WALLET],
        columns=_FIELD_VALUE_COLUMNS,
        rows=_field_rows(
            [
                ("Wallet Balance", format_naira(balance)),
                ("Savings Wallet Balance", format_naira(wallet.savings_balance if wallet else None)),
                ("Savings Percentage", savings_pct),
                ("Wallet Status", "Active" if wallet and wallet.is_active else "Inactive"),
                ("Bank Name", _text(bank)),
                ("Account Number", _text(number)),
                ("Account Name", _text(name)),
            ]
        ),
    )


def _short_id(value: str) -> str:
    return f"{value[:10]}..." if len(value) > 10 else value


def _loans(farmer: Farmer, details: FinancialDetails) -> SectionBlock:
    return SectionBlock(
        title=SECTION_TITLES[StatementSection.LOANS],
        columns=("Loan ID", "Principal", "Total Repayment", "Amount Paid", "Outstanding", "Status"),
        rows=tuple(
            {
                "Loan ID": _short_id(loan.id),
                "Principal": format_naira(loan.principal_amount),
                "Total Repayment": format_naira(loan.total_repayment),
                "Amount Paid": format_naira(loan.amount_paid),
                "Outstanding": format_naira(loan.amount_outstanding),
                "Status": _text(loan.status),
            }
            for loan in details.outstanding_loans
        ),
        empty_message="No outstanding loans available.",
    )


def _transactions(farmer: Farmer, details: FinancialDetails) -> SectionBlock:
    return SectionBlock(
        title=SECTION_TITLES[StatementSection.TRANSACTIONS],
        columns=("Date", "Type", "Description", "Status", "Amount"),
        rows=tuple(
            {
                "Date": _datetime_cell(tx.created_at),
                "Type": _type_cell(tx.transaction_type),
                "Description": _text(tx.description),
                "Status": tx.status.value,
                "Amount": format_naira(tx.amount_major),
            }
            for tx in details.recent_transactions
        ),
        empty_message="No transactions in this period.",
    )


def _purchases(farmer: Farmer, details: FinancialDetails) -> SectionBlock:
    return SectionBlock(
        title=SECTION_TITLES[StatementSection.PURCHASES],
        columns=("Date", "Weight (KG)", "Status", "Total Amount", "Net Credited"),
        rows=tuple(
            {
                "Date": _datetime_cell(p.created_at),
                "Weight (KG)": f"{p.weight_kg:,}",
                "Status": p.status.value,
                "Total Amount": format_naira(p.total_amount),
                "Net Credited": _money_or_na(p.net_amount_credited),
            }
            for p in details.recent_purchases
        ),
        empty_message="No purchases in this period.",
    )


def _sessions(farmer: Farmer, details: FinancialDetails) -> SectionBlock:
    return SectionBlock(
        title=SECTION_TITLES[StatementSection.SESSIONS],
        columns=("Start Time", "Session ID", "Network", "Status", "Action", "Duration"),
        rows=tuple(
            {
                "Start Time": _datetime_cell(s.start_time),
                "Session ID": _text(s.session_id),
                "Network": _text(s.network, "UNKNOWN"),
                "Status": _text(s.status),
                "Action": _text(s.action),
                "Duration": f"{s.duration_seconds} sec",
            }
            for s in details.recent_sessions
        ),
        empty_message="No USSD sessions in this period.",
    )


def _activity(farmer: Farmer, details: FinancialDetails) -> SectionBlock:
    return SectionBlock(
        title=SECTION_TITLES[StatementSection.ACTIVITY],
        columns=_FIELD_VALUE_COLUMNS,
        rows=_field_rows(
            [
                ("Member Since", _date_cell(farmer.created_at)),
                ("Last Updated", _date_cell(farmer.updated_at)),
                ("Total Sales", _count_cell(farmer.total_sales)),
                ("Total Earnings", format_naira(farmer.total_earnings)),
                ("Completed Sales", _count_cell(farmer.completed_sales)),
            ]
        ),
    )


_BUILDERS = {
    StatementSection.PERSONAL: _personal,
    StatementSection.WALLET: _wallet,
    StatementSection.LOANS: _loans,
    StatementSection.TRANSACTIONS: _transactions,
    StatementSection.PURCHASES: _purchases,
    StatementSection.SESSIONS: _sessions,
    StatementSection.ACTIVITY: _activity,
}


def assemble_farmer_statement(
    farmer: Farmer,
    details: FinancialDetails,
    sections: Mapping[str, bool] | Iterable[str | StatementSection],
    *,
    generated_at: datetime | None = None,
) -> Statement:
    """Build a farmer statement from already-fetched records.

    Raises :class:`EmptySelectionError` before doing any work when no section
    is enabled.
    """

    selected = resolve_sections(sections)
    when = generated_at or datetime.now(UTC)
    header = {
        "Farmer": farmer.full_name.upper(),
        "Farmer ID": farmer.id,
        "Generated": _datetime_cell(when),
        "Sections": ", ".join(SECTION_TITLES[s] for s in selected),
    }
    return Statement(
        title=f"Farmer Statement - {farmer.full_name.upper()}",
        header=header,
        sections=tuple(_BUILDERS[s](farmer, details) for s in selected),
    )


# ---------------------------------------------------------------------------
# Wallet / transaction statements
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StatementKpis:
    total_records: int
    inflow: Decimal
    outflow: Decimal
    net_movement: Decimal
    completed: int
    pending: int
    failed: int
    cancelled: int

    def as_rows(self) -> tuple[StatementRow, ...]:
        return _field_rows(
            [
                ("Total Records", _count_cell(self.total_records)),
                ("Total Inflow", format_naira(self.inflow)),
                ("Total Outflow", format_naira(self.outflow)),
                ("Net Movement", format_naira(self.net_movement)),
                ("Completed", _count_cell(self.completed)),
                ("Pending", _count_cell(self.pending)),
                ("Failed", _count_cell(self.failed)),
                ("Cancelled", _count_cell(self.cancelled)),
            ]
        )


def statement_kpis(rows: Iterable[CanonicalTransaction]) -> StatementKpis:
    """Summarize a transaction set by flow direction and status.

    Known outgoing/incoming types are classified by type; anything else by the
    sign of its amount.
    """

    inflow = Decimal("0.00")
    outflow = Decimal("0.00")
    counts = {s: 0 for s in Status}
    total = 0
    for tx in rows:
        total += 1
        t = tx.transaction_type.strip().lower()
        amount = tx.amount_major
        if t in OUTFLOW_TYPES:
            outflow += amount
        elif t in INFLOW_TYPES:
            inflow += amount
        elif amount >= 0:
            inflow += amount
        else:
            outflow += abs(amount)
        counts[tx.status] += 1
    return StatementKpis(
        total_records=total,
        inflow=inflow,
        outflow=outflow,
        net_movement=inflow - outflow,
        completed=counts[Status.COMPLETED],
        pending=counts[Status.PENDING],
        failed=counts[Status.FAILED],
        cancelled=counts[Status.CANCELLED],
    )


def transaction_row(tx: CanonicalTransaction) -> StatementRow:
    return {
        "Date": _datetime_cell(tx.created_at),
        "Reference": _text(tx.reference),
        "Type": _type_cell(tx.transaction_type),
        "Status": tx.status.value,
        "Amount": format_naira(tx.amount_major),
        "Balance After": _money_or_na(tx.balance_after_major),
        "Description": tx.description,
    }


def describe_filters(filters: TransactionFilters | None, *, limit: int | None = None) -> str:
    f = filters or TransactionFilters()
    parts = [
        f"Start: {f.date_start.isoformat()}" if f.date_start else "",
        f"End: {f.date_end.isoformat()}" if f.date_end else "",
        f"Status: {f.status}" if f.status else "Status: all",
        f"Search: {f.search}" if f.search else "",
        f"Sort: {f.sort_by} {f.sort_order.upper()}",
        f"Max records per section: {limit:,}" if limit is not None else "",
    ]
    return " | ".join(p for p in parts if p)


def assemble_transaction_statement(
    title: str,
    sections_rows: Mapping[str, Sequence[CanonicalTransaction]],
    filters: TransactionFilters | None = None,
    *,
    limit: int | None = None,
    generated_at: datetime | None = None,
) -> Statement:
    """One KPI block plus one transaction table per wallet section.

    ``sections_rows`` maps a section label (e.g. ``"Purchase Wallet"``) to its
    rows; label order is preserved.
    """

    if not sections_rows:
        raise EmptySelectionError("select at least one wallet section")
    when = generated_at or datetime.now(UTC)
    blocks: list[SectionBlock] = []
    for label, rows in sections_rows.items():
        kpis = statement_kpis(rows)
        blocks.append(
            SectionBlock(
                title=f"{label} Summary",
                columns=_FIELD_VALUE_COLUMNS,
                rows=kpis.as_rows(),
            )
        )
        blocks.append(
            SectionBlock(
                title=f"{label} Statement",
                columns=TRANSACTION_COLUMNS,
                rows=tuple(transaction_row(tx) for tx in rows),
                empty_message="No transactions found for this section.",
            )
        )
    header = {
        "Exported": _datetime_cell(when),
        "Filters": describe_filters(filters, limit=limit),
    }
    return Statement(title=title, header=header, sections=tuple(blocks))


__all__ = [
    "INFLOW_TYPES",
    "ORGANIZATION_WALLET_LABELS",
    "OUTFLOW_TYPES",
    "SECTION_TITLES",
    "SectionBlock",
    "Statement",
    "StatementKpis",
    "StatementSection",
    "TRANSACTION_COLUMNS",
    "assemble_farmer_statement",
    "assemble_transaction_statement",
    "describe_filters",
    "resolve_sections",
    "statement_kpis",
    "transaction_row",
]
