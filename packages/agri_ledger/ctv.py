"""Canonical Transaction View (CTV) shared by every transaction category.

Wallet, loan, purchase, payroll and organization rows all normalize into
:class:`CanonicalTransaction`. Monetary values are ``Decimal`` in major units
(naira). Category-specific details travel in ``payload``:

    - ``PayrollPayload`` for payroll rows sourced from payroll transactions
    - ``PurchasePayload`` for purchase rows sourced from purchase records
    - ``LoanPayload`` for loan ledger rows
    - ``None`` for wallet/organization rows and for generic ledger rows

The payload ``kind`` must match the row's ``category``.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, ClassVar, TypeAlias


class Category(StrEnum):
    ALL = "all"
    WALLET = "wallet"
    LOAN = "loan"
    PURCHASE = "purchase"
    PAYROLL = "payroll"
    ORGANIZATION = "organization"


class Status(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CounterpartyKind(StrEnum):
    FARMER = "farmer"
    STAFF = "staff"
    BUYER = "buyer"
    ORGANIZATION = "organization"


@dataclass(frozen=True, slots=True)
class PayrollPayload:
    kind: ClassVar[Category] = Category.PAYROLL

    gross_salary: Decimal
    net_salary: Decimal
    pension_employee: Decimal
    pension_employer: Decimal
    tax_deduction: Decimal
    payroll_period_label: str


@dataclass(frozen=True, slots=True)
class PurchasePayload:
    kind: ClassVar[Category] = Category.PURCHASE

    weight_kg: Decimal
    price_per_kg: Decimal
    loan_deduction: Decimal | None
    savings_deduction: Decimal | None
    net_amount_credited: Decimal | None


@dataclass(frozen=True, slots=True)
class LoanPayload:
    kind: ClassVar[Category] = Category.LOAN

    loan_id: str | None


TransactionPayload: TypeAlias = PayrollPayload | PurchasePayload | LoanPayload


def _json_value(v: Any) -> Any:
    if isinstance(v, Decimal):
        return f"{v:.2f}"
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, StrEnum):
        return v.value
    return v


@dataclass(frozen=True, slots=True)
class CanonicalTransaction:
    """A single normalized transaction row (major units throughout)."""

    id: str
    category: Category
    counterparty_id: str
    counterparty_name: str
    counterparty_kind: CounterpartyKind
    amount_major: Decimal
    balance_after_major: Decimal | None
    status: Status
    reference: str
    description: str
    created_at: datetime | None
    transaction_type: str
    wallet_type: str | None = None
    payload: TransactionPayload | None = None

    def __post_init__(self) -> None:
        if self.category is Category.ALL:
            raise ValueError("CanonicalTransaction.category must be a concrete category, not 'all'")
        if self.payload is not None and self.payload.kind is not self.category:
            raise ValueError(
                f"payload kind {self.payload.kind.value!r} does not match category "
                f"{self.category.value!r}"
            )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly mapping (decimals as 2dp strings, ISO timestamps)."""

        out: dict[str, Any] = {
            "id": self.id,
            "category": self.category.value,
            "counterparty_id": self.counterparty_id,
            "counterparty_name": self.counterparty_name,
            "counterparty_kind": self.counterparty_kind.value,
            "amount_major": _json_value(self.amount_major),
            "balance_after_major": _json_value(self.balance_after_major),
            "status": self.status.value,
            "reference": self.reference,
            "description": self.description,
            "created_at": _json_value(self.created_at),
            "transaction_type": self.transaction_type,
            "wallet_type": self.wallet_type,
            "payload": None,
        }
        if self.payload is not None:
            payload = {"kind": self.payload.kind.value}
            for f in fields(self.payload):
                payload[f.name] = _json_value(getattr(self.payload, f.name))
            out["payload"] = payload
        return out


__all__ = [
    "CanonicalTransaction",
    "Category",
    "CounterpartyKind",
    "LoanPayload",
    "PayrollPayload",
    "PurchasePayload",
    "Status",
    "TransactionPayload",
]
