"""Public interface for the ``agri_ledger`` package.

Re-exports the canonical types, normalizers, fetch/cache layers and the
statement assembler as the stable import surface. There is no runtime logic
here, only symbol re-exports.
"""

from .cache import CategoryCache, SlotState, SlotView
from .ctv import CanonicalTransaction, Category, CounterpartyKind, Status
from .errors import (
    EmptySelectionError,
    FetchError,
    LedgerError,
    NormalizationError,
    TransportError,
)
from .fetching import CategoryFetcher, RecordFetcher, fetch_all_pages
from .models import (
    Farmer,
    FinancialDetails,
    Page,
    Payroll,
    PayrollTransaction,
    Purchase,
    TransactionFilters,
)
from .money import format_naira, to_major, to_minor
from .normalizers import EntityKind, Unit, normalize, to_canonical
from .statements import (
    Statement,
    StatementSection,
    assemble_farmer_statement,
    assemble_transaction_statement,
    statement_kpis,
)
from .transport import HttpxTransport, Transport

__all__ = [
    # Canonical view and records
    "CanonicalTransaction",
    "Category",
    "CounterpartyKind",
    "Farmer",
    "FinancialDetails",
    "Page",
    "Payroll",
    "PayrollTransaction",
    "Purchase",
    "Status",
    "TransactionFilters",
    # Normalization and units
    "EntityKind",
    "Unit",
    "format_naira",
    "normalize",
    "to_canonical",
    "to_major",
    "to_minor",
    # Fetching and caching
    "CategoryCache",
    "CategoryFetcher",
    "HttpxTransport",
    "RecordFetcher",
    "SlotState",
    "SlotView",
    "Transport",
    "fetch_all_pages",
    # Statements
    "Statement",
    "StatementSection",
    "assemble_farmer_statement",
    "assemble_transaction_statement",
    "statement_kpis",
    # Errors
    "EmptySelectionError",
    "FetchError",
    "LedgerError",
    "NormalizationError",
    "TransportError",
]
