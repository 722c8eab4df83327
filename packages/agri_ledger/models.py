"""Entity records, query filters and page containers for ``agri_ledger``.

Entity records are frozen dataclasses produced by
:mod:`agri_ledger.normalizers`. Alias fields (legacy names kept for callers)
are declared with ``init=False`` and computed in ``__post_init__`` from the
canonical fields, so they cannot be supplied by callers and can never drift
from the values they mirror.

Query filters are a closed pydantic model: unknown keys are rejected rather
than forwarded to the backend.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .ctv import CanonicalTransaction, Status

# ---------------------------------------------------------------------------
# Payroll
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PayrollTransaction:
    """One staff member's disbursement within a payroll run."""

    id: str
    payroll_id: str | None
    staff_id: str | None
    user_id: str | None
    employee_id: str
    staff_name: str
    department: str
    role: str
    gross_salary: Decimal
    pension_employee_contribution: Decimal
    pension_employer_contribution: Decimal
    total_pension_contribution: Decimal
    tax_deduction: Decimal
    other_deductions: Decimal
    total_deductions: Decimal
    net_salary: Decimal
    status: Status
    payment_reference: str
    paid_at: datetime | None
    payroll_period_label: str
    failed_reason: str | None
    retry_count: int
    created_at: datetime | None

    # Aliases
    staff_full_name: str = field(init=False)
    staff_employee_id: str = field(init=False)
    employee_pension_contribution: Decimal = field(init=False)
    employer_pension_contribution: Decimal = field(init=False)
    payment_status: Status = field(init=False)
    payment_date: datetime | None = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "staff_full_name", self.staff_name)
        object.__setattr__(self, "staff_employee_id", self.employee_id)
        object.__setattr__(
            self, "employee_pension_contribution", self.pension_employee_contribution
        )
        object.__setattr__(
            self, "employer_pension_contribution", self.pension_employer_contribution
        )
        object.__setattr__(self, "payment_status", self.status)
        object.__setattr__(self, "payment_date", self.paid_at)


@dataclass(frozen=True, slots=True)
class Payroll:
    """A payroll run (one pay period) with aggregate totals."""

    id: str
    period_start: datetime | None
    period_end: datetime | None
    period_label: str
    status: Status
    total_staff_count: int
    processed_count: int
    failed_count: int
    total_gross_amount: Decimal
    total_net_amount: Decimal
    total_pension_employee: Decimal
    total_pension_employer: Decimal
    total_tax_deducted: Decimal
    is_automated: bool
    initiated_by: str | None
    processed_at: datetime | None
    completed_at: datetime | None
    failed_reason: str | None
    error_logs: tuple[str, ...]
    notes: str | None
    created_at: datetime | None

    # Aliases
    processed_staff_count: int = field(init=False)
    failed_staff_count: int = field(init=False)
    total_pension_amount: Decimal = field(init=False)
    total_tax_amount: Decimal = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "processed_staff_count", self.processed_count)
        object.__setattr__(self, "failed_staff_count", self.failed_count)
        object.__setattr__(
            self,
            "total_pension_amount",
            self.total_pension_employee + self.total_pension_employer,
        )
        object.__setattr__(self, "total_tax_amount", self.total_tax_deducted)


# ---------------------------------------------------------------------------
# Purchases and farmers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Purchase:
    """A produce purchase from a farmer (amounts in naira)."""

    id: str
    farmer_id: str | None
    farmer_name: str
    farmer_phone: str
    weight_kg: Decimal
    unit: str
    price_per_kg: Decimal
    total_amount: Decimal
    status: Status
    payment_method: str
    payment_status: str
    recorded_by: str
    location: str | None
    notes: str | None
    reference: str
    loan_deduction_amount: Decimal | None
    savings_deduction_amount: Decimal | None
    net_amount_credited: Decimal | None
    organization_wallet_debited_amount: Decimal | None
    created_at: datetime | None
    updated_at: datetime | None


@dataclass(frozen=True, slots=True)
class Farmer:
    id: str
    user_id: str | None
    first_name: str
    last_name: str
    full_name: str
    phone: str
    lga: str
    farm_size_hectares: Decimal | None
    total_sales: int
    total_earnings: Decimal
    completed_sales: int
    wallet_balance: Decimal | None
    loan_defaults: int
    active_loan: bool
    status: str
    wallet_bank_name: str | None
    wallet_account_number: str | None
    wallet_account_name: str | None
    created_at: datetime | None
    updated_at: datetime | None

    # Alias
    name: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", self.full_name)


# ---------------------------------------------------------------------------
# Farmer financial status (statement inputs)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LoanSummary:
    id: str
    principal_amount: Decimal
    total_repayment: Decimal
    amount_paid: Decimal
    amount_outstanding: Decimal
    status: str


@dataclass(frozen=True, slots=True)
class UssdSession:
    id: str
    session_id: str
    start_time: datetime | None
    network: str
    status: str
    action: str
    duration_seconds: int


@dataclass(frozen=True, slots=True)
class WalletSnapshot:
    balance: Decimal
    savings_balance: Decimal
    savings_percentage: Decimal | None
    is_active: bool
    bank_name: str | None
    account_number: str | None
    account_name: str | None


@dataclass(frozen=True, slots=True)
class FinancialDetails:
    """Already-fetched financial status for one farmer.

    ``skipped_count`` counts sub-rows that failed normalization and were left
    out of the collections below.
    """

    wallet: WalletSnapshot | None
    outstanding_loans: tuple[LoanSummary, ...] = ()
    recent_transactions: tuple[CanonicalTransaction, ...] = ()
    recent_purchases: tuple[Purchase, ...] = ()
    recent_sessions: tuple[UssdSession, ...] = ()
    skipped_count: int = 0


# ---------------------------------------------------------------------------
# Filters and pages
# ---------------------------------------------------------------------------


class TransactionFilters(BaseModel):
    """Closed set of listing filters shared by every category tab.

    Empty strings are treated as "not set" so they are never sent to the
    backend and never change the filter signature.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    search: str | None = None
    status: str | None = None
    date_start: date | None = None
    date_end: date | None = None
    wallet_type: str | None = None
    sort_by: str = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"

    @field_validator("search", "status", "date_start", "date_end", "wallet_type", mode="before")
    @classmethod
    def _blank_is_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _date_range_ordered(self) -> TransactionFilters:
        if self.date_start and self.date_end and self.date_start > self.date_end:
            raise ValueError("date_start must not be after date_end")
        return self

    def query_params(self) -> dict[str, str]:
        """Backend query parameters for this filter set, empty values omitted."""

        candidates: list[tuple[str, Any]] = [
            ("search", self.search),
            ("status", self.status),
            ("startDate", self.date_start.isoformat() if self.date_start else None),
            ("endDate", self.date_end.isoformat() if self.date_end else None),
            ("walletType", self.wallet_type),
            ("sortBy", self.sort_by),
            ("sortOrder", self.sort_order),
        ]
        return {k: str(v) for k, v in candidates if v is not None and str(v) != ""}

    def signature(self, page: int) -> str:
        """Deterministic cache-invalidation key for this filter set at ``page``."""

        payload = {
            "page": page,
            "search": self.search,
            "status": self.status,
            "startDate": self.date_start.isoformat() if self.date_start else None,
            "endDate": self.date_end.isoformat() if self.date_end else None,
            "walletType": self.wallet_type,
        }
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One normalized page of records plus backend pagination metadata."""

    rows: tuple[T, ...]
    total: int
    page: int
    total_pages: int
    skipped_count: int = 0


__all__ = [
    "FinancialDetails",
    "Farmer",
    "LoanSummary",
    "Page",
    "Payroll",
    "PayrollTransaction",
    "Purchase",
    "TransactionFilters",
    "UssdSession",
    "WalletSnapshot",
]
