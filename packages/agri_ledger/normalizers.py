"""Raw backend record → canonical record normalizers.

Backend payloads mix camelCase and snake_case keys, populate some references
as nested objects and leave others as raw ids, and report currency either in
minor units (kobo) or already-converted major units (naira). Each entity kind
has a declarative lookup table mapping a canonical field to a priority-ordered
tuple of raw candidates:

- plain keys (``"netSalary"``, ``"net_salary"``)
- dotted paths into populated references (``"staff_id.first_name"``)

Resolution takes the first candidate whose value is not ``None``. ``0``,
``False`` and ``""`` are real values and are never skipped in favour of a
later candidate. A dotted path that runs into a raw id string resolves to
nothing.

Currency units are fixed per data source (``Unit``); the normalizer never
guesses from magnitudes. Missing ``id`` or a missing primary amount raises
:class:`~agri_ledger.errors.NormalizationError`; cosmetic fields fall back to
``"N/A"`` or ``""``. Unknown raw keys are dropped.

Everything here is pure: no I/O, no logging, no module state.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any, TypeAlias, TypeVar

from .ctv import (
    CanonicalTransaction,
    Category,
    CounterpartyKind,
    LoanPayload,
    PayrollPayload,
    PurchasePayload,
    Status,
)
from .errors import NormalizationError
from .models import (
    Farmer,
    FinancialDetails,
    LoanSummary,
    Payroll,
    PayrollTransaction,
    Purchase,
    UssdSession,
    WalletSnapshot,
)
from .money import quantize_major, to_major

# An opaque raw record as decoded from backend JSON. Only this module looks
# inside it.
RawRecord: TypeAlias = Mapping[str, Any]

R = TypeVar("R")


class EntityKind(StrEnum):
    PAYROLL = "payroll"
    PAYROLL_TRANSACTION = "payroll_transaction"
    PURCHASE = "purchase"
    FARMER = "farmer"
    TRANSACTION = "transaction"
    LOAN_SUMMARY = "loan_summary"
    USSD_SESSION = "ussd_session"


class Unit(StrEnum):
    MINOR = "minor"
    MAJOR = "major"


# ---------------------------------------------------------------------------
# Lookup tables (canonical field -> raw candidates, highest priority first)
# ---------------------------------------------------------------------------

_ID = ("id", "_id")

_PAYROLL_TRANSACTION_FIELDS: dict[str, tuple[str, ...]] = {
    "id": _ID,
    "payroll_id": ("payrollId", "payroll_id._id", "payroll_id"),
    "staff_id": ("staffId", "staff_id._id", "staff_id"),
    "user_id": ("userId", "user_id._id", "user_id"),
    "employee_id": ("employeeId", "employee_id", "staff_id.employee_id", "staff_id.employeeId"),
    "staff_name": ("staffName", "staff_name"),
    "staff_first_name": ("staff_id.first_name", "staff_id.firstName"),
    "staff_last_name": ("staff_id.last_name", "staff_id.lastName"),
    "department": ("department", "staff_id.department"),
    "role": ("role", "staff_id.role"),
    "gross_salary": ("grossSalary", "gross_salary"),
    "pension_employee_contribution": (
        "pensionEmployeeContribution",
        "pension_employee_contribution",
    ),
    "pension_employer_contribution": (
        "pensionEmployerContribution",
        "pension_employer_contribution",
    ),
    "total_pension_contribution": ("totalPensionContribution", "total_pension_contribution"),
    "tax_deduction": ("taxDeduction", "tax_deduction"),
    "other_deductions": ("otherDeductions", "other_deductions"),
    "total_deductions": ("totalDeductions", "total_deductions"),
    "net_salary": ("netSalary", "net_salary"),
    "status": ("status", "paymentStatus", "payment_status"),
    "payment_reference": ("paymentReference", "payment_reference"),
    "paid_at": ("paidAt", "paid_at"),
    "payroll_period_label": (
        "payrollPeriodLabel",
        "payroll_period_label",
        "payroll_id.period_label",
        "payroll_id.periodLabel",
    ),
    "failed_reason": ("failedReason", "failed_reason"),
    "retry_count": ("retryCount", "retry_count"),
    "created_at": ("createdAt", "created_at"),
}

_PAYROLL_FIELDS: dict[str, tuple[str, ...]] = {
    "id": _ID,
    "period_start": ("periodStart", "period_start"),
    "period_end": ("periodEnd", "period_end"),
    "period_label": ("periodLabel", "period_label"),
    "status": ("status",),
    "total_staff_count": ("totalStaffCount", "total_staff_count"),
    "processed_count": ("processedCount", "processed_count"),
    "failed_count": ("failedCount", "failed_count"),
    "total_gross_amount": ("totalGrossAmount", "total_gross_amount"),
    "total_net_amount": ("totalNetAmount", "total_net_amount"),
    "total_pension_employee": ("totalPensionEmployee", "total_pension_employee"),
    "total_pension_employer": ("totalPensionEmployer", "total_pension_employer"),
    "total_tax_deducted": ("totalTaxDeducted", "total_tax_deducted"),
    "is_automated": ("isAutomated", "is_automated"),
    "initiated_by": ("initiatedBy", "initiated_by._id", "initiated_by"),
    "processed_at": ("processedAt", "processed_at"),
    "completed_at": ("completedAt", "completed_at"),
    "failed_reason": ("failedReason", "failed_reason"),
    "error_logs": ("errorLogs", "error_logs"),
    "notes": ("notes",),
    "created_at": ("createdAt", "created_at"),
}

_PURCHASE_FIELDS: dict[str, tuple[str, ...]] = {
    "id": _ID,
    "farmer_id": ("farmerId", "farmer_id._id", "farmer_id", "farmer._id", "farmer.id"),
    "farmer_name": ("farmerName", "farmer_name", "farmer.name", "farmer.fullName"),
    "farmer_first_name": ("farmer_id.first_name", "farmer_id.firstName"),
    "farmer_last_name": ("farmer_id.last_name", "farmer_id.lastName"),
    "farmer_phone": ("farmerPhone", "farmer_phone", "farmer_id.phone", "farmer.phone"),
    "weight_kg": ("weightKg", "weight_kg"),
    "unit": ("unit",),
    "price_per_kg": ("pricePerKg", "price_per_kg"),
    "total_amount": ("totalAmount", "total_amount"),
    "status": ("status",),
    "payment_method": ("paymentMethod", "payment_method"),
    "payment_status": ("paymentStatus", "payment_status"),
    "recorded_by": ("recordedBy", "recorded_by.name", "recorded_by"),
    "location": ("location",),
    "notes": ("notes",),
    "reference": ("reference", "transactionReference", "transaction_reference"),
    "loan_deduction_amount": ("loanDeductionAmount", "loan_deduction_amount"),
    "savings_deduction_amount": ("savingsDeductionAmount", "savings_deduction_amount"),
    "net_amount_credited": ("netAmountCredited", "net_amount_credited"),
    "organization_wallet_debited_amount": (
        "organizationPurchaseWalletDebitedAmount",
        "organization_purchase_wallet_debited_amount",
    ),
    "created_at": ("createdAt", "created_at"),
    "updated_at": ("updatedAt", "updated_at"),
}

_FARMER_FIELDS: dict[str, tuple[str, ...]] = {
    "id": _ID,
    "user_id": ("userId", "user_id._id", "user_id"),
    "first_name": ("firstName", "first_name", "user_id.first_name"),
    "last_name": ("lastName", "last_name", "user_id.last_name"),
    "full_name": ("fullName", "full_name"),
    "raw_name": ("name",),
    "phone": ("phone", "phoneNumber", "phone_number", "user_id.phone"),
    "lga": ("lga",),
    "farm_size_hectares": ("farmSizeHectares", "farm_size_hectares", "farmSize"),
    "total_sales": ("totalSales", "total_sales"),
    "total_earnings": ("totalEarnings", "total_earnings"),
    "completed_sales": ("completedSales", "completed_sales"),
    "wallet_balance": ("walletBalance", "wallet_balance", "wallet.balance"),
    "loan_defaults": ("loanDefaults", "loan_defaults"),
    "active_loan": ("activeLoan", "active_loan", "hasActiveLoan"),
    "status": ("status",),
    "wallet_bank_name": ("walletBankName", "wallet.bankName", "wallet.bank_name"),
    "wallet_account_number": (
        "walletAccountNumber",
        "wallet.accountNumber",
        "wallet.account_number",
    ),
    "wallet_account_name": ("walletAccountName", "wallet.accountName", "wallet.account_name"),
    "created_at": ("createdAt", "created_at"),
    "updated_at": ("updatedAt", "updated_at"),
}

_TRANSACTION_FIELDS: dict[str, tuple[str, ...]] = {
    "id": _ID,
    "category": ("category",),
    "counterparty_id": ("user.id", "user._id", "userId", "user_id._id", "user_id"),
    "counterparty_name": ("user.name", "user.fullName", "userName", "user_name"),
    "counterparty_first_name": ("user_id.first_name", "user.firstName"),
    "counterparty_last_name": ("user_id.last_name", "user.lastName"),
    "counterparty_kind": ("userType", "user_type", "user.type"),
    "amount": ("amount",),
    "balance_after": ("balanceAfter", "balance_after"),
    "status": ("status",),
    "reference": ("reference", "transactionReference", "transaction_reference"),
    "description": ("description", "narration"),
    "created_at": ("createdAt", "created_at"),
    "transaction_type": ("type", "transactionType", "transaction_type"),
    "wallet_type": ("walletType", "wallet_type"),
    "loan_id": ("loanId", "loan_id._id", "loan_id"),
}

_LOAN_SUMMARY_FIELDS: dict[str, tuple[str, ...]] = {
    "id": _ID,
    "principal_amount": ("principalAmount", "principal_amount"),
    "total_repayment": ("totalRepayment", "total_repayment"),
    "amount_paid": ("amountPaid", "amount_paid"),
    "amount_outstanding": ("amountOutstanding", "amount_outstanding"),
    "status": ("status",),
}

_USSD_SESSION_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("id", "_id", "sessionId", "session_id"),
    "session_id": ("sessionId", "session_id"),
    "start_time": ("startTime", "start_time", "createdAt"),
    "network": ("network",),
    "status": ("status",),
    "action": ("action",),
    "duration_seconds": ("duration", "durationSeconds", "duration_seconds"),
}

_WALLET_FIELDS: dict[str, tuple[str, ...]] = {
    "balance": ("balance",),
    "savings_balance": ("savingsBalance", "savings_balance"),
    "savings_percentage": ("savingsPercentage", "savings_percentage"),
    "is_active": ("isActive", "is_active"),
    "bank_name": ("bankName", "bank_name"),
    "account_number": ("accountNumber", "account_number"),
    "account_name": ("accountName", "account_name"),
}

_FINANCIAL_DETAILS_FIELDS: dict[str, tuple[str, ...]] = {
    "wallet": ("wallet",),
    "outstanding_loans": ("outstandingLoans", "outstanding_loans"),
    "recent_transactions": ("recentTransactions", "recent_transactions"),
    "recent_purchases": ("recentPurchases", "recent_purchases"),
    "recent_sessions": ("recentUssdSessions", "recent_ussd_sessions", "recentSessions"),
}

_STATUS_SYNONYMS: dict[str, Status] = {
    "success": Status.COMPLETED,
    "successful": Status.COMPLETED,
    "paid": Status.COMPLETED,
    "complete": Status.COMPLETED,
    "canceled": Status.CANCELLED,
    "in_progress": Status.PROCESSING,
}

_COUNTERPARTY_SYNONYMS: dict[str, CounterpartyKind] = {
    "employee": CounterpartyKind.STAFF,
    "org": CounterpartyKind.ORGANIZATION,
}

_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0"}


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------


def _lookup(raw: RawRecord, path: str) -> Any:
    cur: Any = raw
    for part in path.split("."):
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(part)
        if cur is None:
            return None
    return cur


def first_defined(raw: RawRecord, candidates: Iterable[str], *, scalar: bool = True) -> Any:
    """Return the first candidate value that is not ``None``.

    With ``scalar=True`` (default) populated sub-objects and lists are passed
    over, so ``("staff_id._id", "staff_id")`` yields the nested id when the
    reference is populated and the raw id when it is not.
    """

    for c in candidates:
        v = _lookup(raw, c)
        if v is None:
            continue
        if scalar and isinstance(v, (Mapping, list, tuple)):
            continue
        return v
    return None


class _Reader:
    """Field reader bound to one raw record, its lookup table and unit."""

    __slots__ = ("kind", "raw", "table", "units")

    def __init__(
        self, kind: EntityKind, raw: RawRecord, table: Mapping[str, tuple[str, ...]], units: Unit
    ) -> None:
        if not isinstance(raw, Mapping):
            raise NormalizationError(kind.value, "<record>", raw)
        self.kind = kind
        self.raw = raw
        self.table = table
        self.units = units

    def fail(self, field_name: str) -> NormalizationError:
        return NormalizationError(self.kind.value, field_name, self.raw)

    def value(self, field_name: str, *, scalar: bool = True) -> Any:
        return first_defined(self.raw, self.table[field_name], scalar=scalar)

    def identifier(self) -> str:
        # id -> _id -> stringified _id (Mongo extended JSON {"$oid": ...})
        for c in self.table["id"]:
            v = _lookup(self.raw, c)
            if isinstance(v, Mapping):
                v = v.get("$oid")
            if v is None or isinstance(v, (list, tuple, bool)):
                continue
            s = str(v).strip()
            if s:
                return s
        raise self.fail("id")

    def text(self, field_name: str, default: str = "") -> str:
        v = self.value(field_name)
        if v is None:
            return default
        s = str(v).strip()
        return s if s else default

    def optional_text(self, field_name: str) -> str | None:
        v = self.value(field_name)
        if v is None:
            return None
        return str(v).strip() or None

    def composite_name(self, first_field: str, last_field: str) -> str:
        first = self.text(first_field)
        last = self.text(last_field)
        return f"{first} {last}".strip()

    def money(self, field_name: str, *, required: bool = False) -> Decimal | None:
        v = self.value(field_name)
        if v is None:
            if required:
                raise self.fail(field_name)
            return None
        try:
            return to_major(v) if self.units is Unit.MINOR else quantize_major(v)
        except ValueError as exc:
            raise self.fail(field_name) from exc

    def money_or_zero(self, field_name: str) -> Decimal:
        amount = self.money(field_name)
        return amount if amount is not None else to_major(None)

    def decimal(self, field_name: str) -> Decimal | None:
        v = self.value(field_name)
        if v is None:
            return None
        if isinstance(v, bool):
            raise self.fail(field_name)
        try:
            d = Decimal(str(v).strip())
        except InvalidOperation as exc:
            raise self.fail(field_name) from exc
        if not d.is_finite():
            raise self.fail(field_name)
        return d

    def count(self, field_name: str) -> int:
        v = self.value(field_name)
        if v is None:
            return 0
        if isinstance(v, bool):
            raise self.fail(field_name)
        try:
            return int(Decimal(str(v).strip()))
        except (InvalidOperation, ValueError, OverflowError) as exc:
            raise self.fail(field_name) from exc

    def flag(self, field_name: str) -> bool:
        v = self.value(field_name)
        if v is None:
            return False
        if isinstance(v, bool):
            return v
        s = str(v).strip().lower()
        if s in _TRUE_STRINGS:
            return True
        if s in _FALSE_STRINGS:
            return False
        raise self.fail(field_name)

    def timestamp(self, field_name: str) -> datetime | None:
        v = self.value(field_name, scalar=False)
        if isinstance(v, Mapping):
            v = v.get("$date")
        return _parse_timestamp(v)

    def status(self, field_name: str = "status") -> Status:
        v = self.value(field_name)
        if v is None:
            return Status.PENDING
        s = str(v).strip().lower()
        if s in _STATUS_SYNONYMS:
            return _STATUS_SYNONYMS[s]
        try:
            return Status(s)
        except ValueError as exc:
            raise self.fail(field_name) from exc


def _parse_timestamp(v: Any) -> datetime | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, datetime):
        return v
    if isinstance(v, (int, float)):
        # Epoch milliseconds, as emitted by JSON-serialized JS Dates.
        try:
            return datetime.fromtimestamp(v / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    s = str(v).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None


def _units(kind: EntityKind, units: Unit | str | None) -> Unit:
    if units is None:
        return _DEFAULT_UNITS[kind]
    return Unit(units)


# Every backend collection reports currency in kobo unless a caller says
# otherwise for a specific pre-converted source.
_DEFAULT_UNITS: dict[EntityKind, Unit] = {kind: Unit.MINOR for kind in EntityKind}


# ---------------------------------------------------------------------------
# Per-kind normalizers
# ---------------------------------------------------------------------------


def normalize_payroll_transaction(
    raw: RawRecord, *, units: Unit | str | None = None
) -> PayrollTransaction:
    kind = EntityKind.PAYROLL_TRANSACTION
    r = _Reader(kind, raw, _PAYROLL_TRANSACTION_FIELDS, _units(kind, units))

    staff_name = r.text("staff_name") or r.composite_name("staff_first_name", "staff_last_name")
    return PayrollTransaction(
        id=r.identifier(),
        payroll_id=r.optional_text("payroll_id"),
        staff_id=r.optional_text("staff_id"),
        user_id=r.optional_text("user_id"),
        employee_id=r.text("employee_id", "N/A"),
        staff_name=staff_name or "N/A",
        department=r.text("department", "N/A"),
        role=r.text("role", "N/A"),
        gross_salary=r.money_or_zero("gross_salary"),
        pension_employee_contribution=r.money_or_zero("pension_employee_contribution"),
        pension_employer_contribution=r.money_or_zero("pension_employer_contribution"),
        total_pension_contribution=r.money_or_zero("total_pension_contribution"),
        tax_deduction=r.money_or_zero("tax_deduction"),
        other_deductions=r.money_or_zero("other_deductions"),
        total_deductions=r.money_or_zero("total_deductions"),
        net_salary=r.money("net_salary", required=True),  # type: ignore[arg-type]
        status=r.status(),
        payment_reference=r.text("payment_reference"),
        paid_at=r.timestamp("paid_at"),
        payroll_period_label=r.text("payroll_period_label", "N/A"),
        failed_reason=r.optional_text("failed_reason"),
        retry_count=r.count("retry_count"),
        created_at=r.timestamp("created_at"),
    )


def normalize_payroll(raw: RawRecord, *, units: Unit | str | None = None) -> Payroll:
    kind = EntityKind.PAYROLL
    r = _Reader(kind, raw, _PAYROLL_FIELDS, _units(kind, units))

    logs = r.value("error_logs", scalar=False)
    error_logs = tuple(str(x) for x in logs) if isinstance(logs, (list, tuple)) else ()
    return Payroll(
        id=r.identifier(),
        period_start=r.timestamp("period_start"),
        period_end=r.timestamp("period_end"),
        period_label=r.text("period_label", "N/A"),
        status=r.status(),
        total_staff_count=r.count("total_staff_count"),
        processed_count=r.count("processed_count"),
        failed_count=r.count("failed_count"),
        total_gross_amount=r.money_or_zero("total_gross_amount"),
        total_net_amount=r.money("total_net_amount", required=True),  # type: ignore[arg-type]
        total_pension_employee=r.money_or_zero("total_pension_employee"),
        total_pension_employer=r.money_or_zero("total_pension_employer"),
        total_tax_deducted=r.money_or_zero("total_tax_deducted"),
        is_automated=r.flag("is_automated"),
        initiated_by=r.optional_text("initiated_by"),
        processed_at=r.timestamp("processed_at"),
        completed_at=r.timestamp("completed_at"),
        failed_reason=r.optional_text("failed_reason"),
        error_logs=error_logs,
        notes=r.optional_text("notes"),
        created_at=r.timestamp("created_at"),
    )


def normalize_purchase(raw: RawRecord, *, units: Unit | str | None = None) -> Purchase:
    kind = EntityKind.PURCHASE
    r = _Reader(kind, raw, _PURCHASE_FIELDS, _units(kind, units))

    farmer_name = r.text("farmer_name") or r.composite_name(
        "farmer_first_name", "farmer_last_name"
    )
    weight = r.decimal("weight_kg")
    return Purchase(
        id=r.identifier(),
        farmer_id=r.optional_text("farmer_id"),
        farmer_name=farmer_name or "N/A",
        farmer_phone=r.text("farmer_phone", "N/A"),
        weight_kg=weight if weight is not None else Decimal("0"),
        unit=r.text("unit", "kg"),
        price_per_kg=r.money_or_zero("price_per_kg"),
        total_amount=r.money("total_amount", required=True),  # type: ignore[arg-type]
        status=r.status(),
        payment_method=r.text("payment_method"),
        payment_status=r.text("payment_status", "pending").lower(),
        recorded_by=r.text("recorded_by", "N/A"),
        location=r.optional_text("location"),
        notes=r.optional_text("notes"),
        reference=r.text("reference"),
        loan_deduction_amount=r.money("loan_deduction_amount"),
        savings_deduction_amount=r.money("savings_deduction_amount"),
        net_amount_credited=r.money("net_amount_credited"),
        organization_wallet_debited_amount=r.money("organization_wallet_debited_amount"),
        created_at=r.timestamp("created_at"),
        updated_at=r.timestamp("updated_at"),
    )


def normalize_farmer(raw: RawRecord, *, units: Unit | str | None = None) -> Farmer:
    kind = EntityKind.FARMER
    r = _Reader(kind, raw, _FARMER_FIELDS, _units(kind, units))

    full_name = (
        r.text("full_name")
        or r.composite_name("first_name", "last_name")
        or r.text("raw_name")
        or "N/A"
    )
    return Farmer(
        id=r.identifier(),
        user_id=r.optional_text("user_id"),
        first_name=r.text("first_name"),
        last_name=r.text("last_name"),
        full_name=full_name,
        phone=r.text("phone", "N/A"),
        lga=r.text("lga", "N/A"),
        farm_size_hectares=r.decimal("farm_size_hectares"),
        total_sales=r.count("total_sales"),
        total_earnings=r.money_or_zero("total_earnings"),
        completed_sales=r.count("completed_sales"),
        wallet_balance=r.money("wallet_balance"),
        loan_defaults=r.count("loan_defaults"),
        active_loan=r.flag("active_loan"),
        status=r.text("status").lower(),
        wallet_bank_name=r.optional_text("wallet_bank_name"),
        wallet_account_number=r.optional_text("wallet_account_number"),
        wallet_account_name=r.optional_text("wallet_account_name"),
        created_at=r.timestamp("created_at"),
        updated_at=r.timestamp("updated_at"),
    )


def _infer_category(
    transaction_type: str, wallet_type: str | None, loan_id: str | None
) -> Category:
    t = transaction_type.lower()
    if loan_id or "loan" in t:
        return Category.LOAN
    if "payroll" in t:
        return Category.PAYROLL
    if "purchase" in t or t == "sale":
        return Category.PURCHASE
    if wallet_type or t.startswith(("organization", "bonus")):
        return Category.ORGANIZATION
    return Category.WALLET


def _default_counterparty_kind(category: Category) -> CounterpartyKind:
    if category is Category.PAYROLL:
        return CounterpartyKind.STAFF
    if category is Category.ORGANIZATION:
        return CounterpartyKind.ORGANIZATION
    return CounterpartyKind.FARMER


def normalize_transaction(
    raw: RawRecord,
    *,
    category: Category | str | None = None,
    units: Unit | str | None = None,
) -> CanonicalTransaction:
    """Normalize a ledger transaction row.

    ``category`` is the listing the row came from. Rows from the combined
    listing (``None`` or ``"all"``) take their category from a raw
    ``category`` key when present, otherwise from the transaction type.
    """

    kind = EntityKind.TRANSACTION
    r = _Reader(kind, raw, _TRANSACTION_FIELDS, _units(kind, units))

    tx_id = r.identifier()
    amount = r.money("amount", required=True)
    transaction_type = r.text("transaction_type")
    wallet_type = r.optional_text("wallet_type")
    loan_id = r.optional_text("loan_id")

    cat = Category(category) if category is not None else Category.ALL
    if cat is Category.ALL:
        raw_cat = r.text("category").lower()
        if raw_cat and raw_cat != Category.ALL.value:
            try:
                cat = Category(raw_cat)
            except ValueError as exc:
                raise r.fail("category") from exc
        else:
            cat = _infer_category(transaction_type, wallet_type, loan_id)

    raw_kind = r.text("counterparty_kind").lower()
    if not raw_kind:
        counterparty_kind = _default_counterparty_kind(cat)
    elif raw_kind in _COUNTERPARTY_SYNONYMS:
        counterparty_kind = _COUNTERPARTY_SYNONYMS[raw_kind]
    else:
        try:
            counterparty_kind = CounterpartyKind(raw_kind)
        except ValueError as exc:
            raise r.fail("counterparty_kind") from exc

    counterparty_name = (
        r.text("counterparty_name")
        or r.composite_name("counterparty_first_name", "counterparty_last_name")
        or "N/A"
    )
    payload = LoanPayload(loan_id=loan_id) if cat is Category.LOAN else None

    return CanonicalTransaction(
        id=tx_id,
        category=cat,
        counterparty_id=r.text("counterparty_id"),
        counterparty_name=counterparty_name,
        counterparty_kind=counterparty_kind,
        amount_major=amount,  # type: ignore[arg-type]
        balance_after_major=r.money("balance_after"),
        status=r.status(),
        reference=r.text("reference"),
        description=r.text("description"),
        created_at=r.timestamp("created_at"),
        transaction_type=transaction_type,
        wallet_type=wallet_type,
        payload=payload,
    )


def normalize_loan_summary(raw: RawRecord, *, units: Unit | str | None = None) -> LoanSummary:
    kind = EntityKind.LOAN_SUMMARY
    r = _Reader(kind, raw, _LOAN_SUMMARY_FIELDS, _units(kind, units))
    return LoanSummary(
        id=r.identifier(),
        principal_amount=r.money_or_zero("principal_amount"),
        total_repayment=r.money_or_zero("total_repayment"),
        amount_paid=r.money_or_zero("amount_paid"),
        amount_outstanding=r.money("amount_outstanding", required=True),  # type: ignore[arg-type]
        status=r.text("status", "N/A").lower(),
    )


def normalize_ussd_session(raw: RawRecord, *, units: Unit | str | None = None) -> UssdSession:
    kind = EntityKind.USSD_SESSION
    r = _Reader(kind, raw, _USSD_SESSION_FIELDS, _units(kind, units))
    return UssdSession(
        id=r.identifier(),
        session_id=r.text("session_id", "N/A"),
        start_time=r.timestamp("start_time"),
        network=r.text("network", "UNKNOWN").upper(),
        status=r.text("status", "N/A").lower(),
        action=r.text("action", "N/A"),
        duration_seconds=r.count("duration_seconds"),
    )


def _normalize_wallet(raw: RawRecord, units: Unit) -> WalletSnapshot:
    r = _Reader(EntityKind.FARMER, raw, _WALLET_FIELDS, units)
    return WalletSnapshot(
        balance=r.money_or_zero("balance"),
        savings_balance=r.money_or_zero("savings_balance"),
        savings_percentage=r.decimal("savings_percentage"),
        is_active=r.flag("is_active"),
        bank_name=r.optional_text("bank_name"),
        account_number=r.optional_text("account_number"),
        account_name=r.optional_text("account_name"),
    )


# ---------------------------------------------------------------------------
# Collections, projection and dispatch
# ---------------------------------------------------------------------------


def normalize_rows(
    normalizer: Callable[[RawRecord], R], rows: Iterable[Any]
) -> tuple[list[R], list[NormalizationError]]:
    """Normalize each row, separating successes from per-row failures.

    Input order is preserved among successes. The caller decides whether to
    skip failed rows or abort.
    """

    ok: list[R] = []
    failed: list[NormalizationError] = []
    for row in rows:
        try:
            ok.append(normalizer(row))
        except NormalizationError as exc:
            failed.append(exc)
    return ok, failed


def normalize_financial_details(
    raw: RawRecord, *, units: Unit | str | None = None
) -> FinancialDetails:
    """Normalize the farmer financial-status payload used by statements."""

    if not isinstance(raw, Mapping):
        raise NormalizationError("financial_details", "<record>", raw)
    u = Unit(units) if units is not None else Unit.MINOR

    def _rows(field_name: str) -> list[Any]:
        v = first_defined(raw, _FINANCIAL_DETAILS_FIELDS[field_name], scalar=False)
        return list(v) if isinstance(v, (list, tuple)) else []

    wallet_raw = first_defined(raw, _FINANCIAL_DETAILS_FIELDS["wallet"], scalar=False)
    wallet = _normalize_wallet(wallet_raw, u) if isinstance(wallet_raw, Mapping) else None

    loans, bad_loans = normalize_rows(
        lambda x: normalize_loan_summary(x, units=u), _rows("outstanding_loans")
    )
    txs, bad_txs = normalize_rows(
        lambda x: normalize_transaction(x, units=u), _rows("recent_transactions")
    )
    purchases, bad_purchases = normalize_rows(
        lambda x: normalize_purchase(x, units=u), _rows("recent_purchases")
    )
    sessions, bad_sessions = normalize_rows(
        lambda x: normalize_ussd_session(x, units=u), _rows("recent_sessions")
    )
    skipped = len(bad_loans) + len(bad_txs) + len(bad_purchases) + len(bad_sessions)
    return FinancialDetails(
        wallet=wallet,
        outstanding_loans=tuple(loans),
        recent_transactions=tuple(txs),
        recent_purchases=tuple(purchases),
        recent_sessions=tuple(sessions),
        skipped_count=skipped,
    )


def to_canonical(
    record: PayrollTransaction | Purchase | CanonicalTransaction,
) -> CanonicalTransaction:
    """Project a payroll transaction or purchase onto the canonical view."""

    if isinstance(record, CanonicalTransaction):
        return record
    if isinstance(record, PayrollTransaction):
        return CanonicalTransaction(
            id=record.id,
            category=Category.PAYROLL,
            counterparty_id=record.staff_id or "",
            counterparty_name=record.staff_name,
            counterparty_kind=CounterpartyKind.STAFF,
            amount_major=record.net_salary,
            balance_after_major=None,
            status=record.status,
            reference=record.payment_reference,
            description=record.payroll_period_label,
            created_at=record.created_at or record.paid_at,
            transaction_type="payroll_disbursement",
            wallet_type="payroll",
            payload=PayrollPayload(
                gross_salary=record.gross_salary,
                net_salary=record.net_salary,
                pension_employee=record.pension_employee_contribution,
                pension_employer=record.pension_employer_contribution,
                tax_deduction=record.tax_deduction,
                payroll_period_label=record.payroll_period_label,
            ),
        )
    if isinstance(record, Purchase):
        return CanonicalTransaction(
            id=record.id,
            category=Category.PURCHASE,
            counterparty_id=record.farmer_id or "",
            counterparty_name=record.farmer_name,
            counterparty_kind=CounterpartyKind.FARMER,
            amount_major=record.total_amount,
            balance_after_major=None,
            status=record.status,
            reference=record.reference,
            description=record.notes or "",
            created_at=record.created_at,
            transaction_type="purchase",
            wallet_type="purchase",
            payload=PurchasePayload(
                weight_kg=record.weight_kg,
                price_per_kg=record.price_per_kg,
                loan_deduction=record.loan_deduction_amount,
                savings_deduction=record.savings_deduction_amount,
                net_amount_credited=record.net_amount_credited,
            ),
        )
    raise TypeError(f"cannot project {type(record).__name__} onto CanonicalTransaction")


_NORMALIZERS: dict[EntityKind, Callable[..., Any]] = {
    EntityKind.PAYROLL: normalize_payroll,
    EntityKind.PAYROLL_TRANSACTION: normalize_payroll_transaction,
    EntityKind.PURCHASE: normalize_purchase,
    EntityKind.FARMER: normalize_farmer,
    EntityKind.TRANSACTION: normalize_transaction,
    EntityKind.LOAN_SUMMARY: normalize_loan_summary,
    EntityKind.USSD_SESSION: normalize_ussd_session,
}


def normalize(kind: EntityKind | str, raw: RawRecord, *, units: Unit | str | None = None) -> Any:
    """Normalize ``raw`` as entity ``kind``.

    Usage
    -----
    tx = normalize("payroll_transaction", raw)  # -> PayrollTransaction
    """

    try:
        k = EntityKind(str(kind).strip().lower())
    except ValueError as exc:
        raise ValueError(f"unknown entity kind: {kind!r}") from exc
    return _NORMALIZERS[k](raw, units=units)


__all__ = [
    "EntityKind",
    "RawRecord",
    "Unit",
    "first_defined",
    "normalize",
    "normalize_farmer",
    "normalize_financial_details",
    "normalize_loan_summary",
    "normalize_payroll",
    "normalize_payroll_transaction",
    "normalize_purchase",
    "normalize_rows",
    "normalize_transaction",
    "normalize_ussd_session",
    "to_canonical",
]
