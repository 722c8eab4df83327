"""Category fetcher: one transport call → one normalized :class:`Page`.

Each category tab has its own backend route and row shape. A fetch builds
deterministic query parameters from :class:`TransactionFilters`, issues
exactly one ``GET``, unwraps the response envelope, and normalizes every row.
Rows that fail normalization are dropped from the page, counted in
``Page.skipped_count`` and logged (``normalize:skip``). Transport failures and
unrecognizable envelopes raise :class:`FetchError`; this layer never retries.

Envelope shapes seen in the wild::

    {"data": {"data": [...], "total": 47, "totalPages": 5, "page": 2}}
    {"data": [...], "total": 47, "pages": 5}
    {"transactions": [...], "total": 47}
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

from .ctv import CanonicalTransaction, Category
from .errors import FetchError, NormalizationError
from .logging_setup import get_logger
from .models import (
    Farmer,
    FinancialDetails,
    Page,
    Payroll,
    PayrollTransaction,
    Purchase,
    TransactionFilters,
)
from .normalizers import (
    EntityKind,
    RawRecord,
    Unit,
    normalize_farmer,
    normalize_financial_details,
    normalize_payroll,
    normalize_payroll_transaction,
    normalize_purchase,
    normalize_transaction,
)
from .transport import Transport

_logger = get_logger("agri_ledger.fetching")

DEFAULT_PAGE_SIZE = 10

CATEGORY_ROUTES: dict[Category, str] = {
    Category.ALL: "/admin/transactions",
    Category.WALLET: "/admin/transactions/wallet",
    Category.LOAN: "/admin/transactions/loans",
    Category.PURCHASE: "/admin/transactions/purchases",
    Category.PAYROLL: "/admin/transactions/payroll",
    Category.ORGANIZATION: "/admin/transactions/organization",
}

# Keys a collection may sit under, after "data" and before a bare top-level list.
_COLLECTION_KEYS = ("data", "items", "rows", "transactions", "payrolls", "farmers", "purchases")

CategoryRecord: TypeAlias = CanonicalTransaction | PayrollTransaction | Purchase


def default_page_size() -> int:
    """Page size from ``AGRI_LEDGER_PAGE_SIZE`` (default 10)."""

    raw = os.getenv("AGRI_LEDGER_PAGE_SIZE")
    if raw is None or not raw.strip():
        return DEFAULT_PAGE_SIZE
    try:
        size = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"AGRI_LEDGER_PAGE_SIZE must be an integer, got {raw!r}") from exc
    if size < 1:
        raise RuntimeError("AGRI_LEDGER_PAGE_SIZE must be at least 1")
    return size


# ---------------------------------------------------------------------------
# Envelope handling
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _Envelope:
    rows: list[Any]
    meta: Mapping[str, Any]


def _find_collection(container: Mapping[str, Any]) -> list[Any] | None:
    for key in _COLLECTION_KEYS:
        v = container.get(key)
        if isinstance(v, list):
            return v
    return None


def unwrap_envelope(body: Any) -> _Envelope | None:
    """Locate the row collection and its pagination metadata.

    Lookup order is ``data.data``, then ``data``, then the top level. The
    pagination metadata is read from the mapping that holds the collection,
    falling back to the outer levels for keys it lacks.
    """

    if isinstance(body, list):
        return _Envelope(rows=body, meta={})
    if not isinstance(body, Mapping):
        return None

    data = body.get("data")
    if isinstance(data, Mapping):
        inner = data.get("data")
        if isinstance(inner, Mapping):
            rows = _find_collection(inner)
            if rows is not None:
                return _Envelope(rows=rows, meta={**body, **data, **inner})
        rows = _find_collection(data)
        if rows is not None:
            return _Envelope(rows=rows, meta={**body, **data})
    elif isinstance(data, list):
        return _Envelope(rows=data, meta=body)

    rows = _find_collection(body)
    if rows is not None:
        return _Envelope(rows=rows, meta=body)
    return None


def _unwrap_object(body: Any) -> Any:
    if isinstance(body, Mapping) and isinstance(body.get("data"), Mapping):
        return body["data"]
    return body


def _as_int(v: Any) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _pagination(
    meta: Mapping[str, Any], raw_count: int, requested_page: int
) -> tuple[int, int, int]:
    pagination = meta.get("pagination")
    if isinstance(pagination, Mapping):
        meta = {**meta, **pagination}
    total = _as_int(meta.get("total"))
    if total is None:
        total = raw_count
    total_pages = _as_int(meta.get("totalPages"))
    if total_pages is None:
        total_pages = _as_int(meta.get("pages"))
    if total_pages is None:
        total_pages = 1
    page = _as_int(meta.get("page"))
    if page is None:
        page = requested_page
    return total, page, total_pages


def _normalize_page_rows(
    rows: list[Any],
    normalizer: Callable[[RawRecord], Any],
    *,
    context: str,
) -> tuple[list[Any], int]:
    out: list[Any] = []
    skipped = 0
    for raw in rows:
        try:
            out.append(normalizer(raw))
        except NormalizationError as exc:
            skipped += 1
            _logger.warning(
                "normalize:skip context=%s entity_kind=%s missing_field=%s",
                context,
                exc.entity_kind,
                exc.missing_field,
            )
    return out, skipped


# ---------------------------------------------------------------------------
# Category fetcher
# ---------------------------------------------------------------------------


def _row_normalizer(category: Category, units: Unit | None) -> Callable[[RawRecord], Any]:
    if category is Category.PURCHASE:
        return lambda raw: normalize_purchase(raw, units=units)
    if category is Category.PAYROLL:
        return lambda raw: normalize_payroll_transaction(raw, units=units)
    return lambda raw: normalize_transaction(raw, category=category, units=units)


class CategoryFetcher:
    """Fetch one page of one category from the backend.

    ``routes`` overrides entries of :data:`CATEGORY_ROUTES`. ``units`` pins the
    currency unit for a deployment whose backend already reports naira; by
    default every row is read as kobo.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        routes: Mapping[Category | str, str] | None = None,
        units: Unit | str | None = None,
    ) -> None:
        self.transport = transport
        self.routes: dict[Category, str] = dict(CATEGORY_ROUTES)
        for k, v in (routes or {}).items():
            self.routes[Category(k)] = v
        self.units = Unit(units) if units is not None else None

    def entity_kind(self, category: Category | str) -> EntityKind:
        c = Category(category)
        if c is Category.PURCHASE:
            return EntityKind.PURCHASE
        if c is Category.PAYROLL:
            return EntityKind.PAYROLL_TRANSACTION
        return EntityKind.TRANSACTION

    @staticmethod
    def build_params(filters: TransactionFilters, page: int, page_size: int) -> dict[str, str]:
        params = {"page": str(page), "limit": str(page_size)}
        params.update(filters.query_params())
        return params

    async def fetch(
        self,
        category: Category | str,
        filters: TransactionFilters | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> Page[CategoryRecord]:
        c = Category(category)
        if page < 1:
            raise ValueError("page must be >= 1")
        size = page_size if page_size is not None else default_page_size()
        if size < 1:
            raise ValueError("page_size must be >= 1")
        f = filters or TransactionFilters()
        route = self.routes[c]
        params = self.build_params(f, page, size)

        _logger.info("fetch:start category=%s page=%d limit=%d", c.value, page, size)
        try:
            body = await self.transport.get(route, params=params)
        except Exception as exc:
            raise FetchError(c.value, exc) from exc

        envelope = unwrap_envelope(body)
        if envelope is None:
            cause = ValueError(f"no row collection in response from {route}")
            raise FetchError(c.value, cause)

        rows, skipped = _normalize_page_rows(
            envelope.rows, _row_normalizer(c, self.units), context=c.value
        )
        total, resolved_page, total_pages = _pagination(envelope.meta, len(envelope.rows), page)
        _logger.info(
            "fetch:done category=%s page=%d rows=%d total=%d total_pages=%d skipped=%d",
            c.value,
            resolved_page,
            len(rows),
            total,
            total_pages,
            skipped,
        )
        return Page(
            rows=tuple(rows),
            total=total,
            page=resolved_page,
            total_pages=total_pages,
            skipped_count=skipped,
        )


async def fetch_all_pages(
    fetcher: CategoryFetcher,
    category: Category | str,
    filters: TransactionFilters | None = None,
    *,
    limit: int = 500,
    page_size: int = 200,
) -> Page[CategoryRecord]:
    """Walk pages until ``total_pages`` is reached or ``limit`` rows are held.

    Returns a single merged :class:`Page` with ``page=1`` and the combined
    ``skipped_count``. Any page failure propagates as :class:`FetchError`.
    """

    if limit < 1:
        raise ValueError("limit must be >= 1")
    rows: list[CategoryRecord] = []
    skipped = 0
    total = 0
    page = 1
    while True:
        result = await fetcher.fetch(category, filters, page=page, page_size=page_size)
        rows.extend(result.rows)
        skipped += result.skipped_count
        total = result.total
        if len(rows) >= limit or page >= result.total_pages or not result.rows:
            break
        page += 1
    return Page(
        rows=tuple(rows[:limit]),
        total=total,
        page=1,
        total_pages=1,
        skipped_count=skipped,
    )


# ---------------------------------------------------------------------------
# Non-category listings
# ---------------------------------------------------------------------------


class RecordFetcher:
    """Payroll runs, farmers and farmer financial status."""

    PAYROLLS = "/payroll"
    PAYROLL_TRANSACTIONS = "/payroll/{payroll_id}/transactions"
    FARMERS = "/admins/farmers/list"
    FARMER = "/admins/farmers/{farmer_id}"
    FINANCIAL_STATUS = "/admin/transactions/farmer/{farmer_id}/financial-status"

    def __init__(self, transport: Transport, *, units: Unit | str | None = None) -> None:
        self.transport = transport
        self.units = Unit(units) if units is not None else None

    async def _get(self, context: str, path: str, params: Mapping[str, Any] | None = None) -> Any:
        _logger.info("fetch:start context=%s path=%s", context, path)
        try:
            return await self.transport.get(path, params=params)
        except Exception as exc:
            raise FetchError(context, exc) from exc

    async def _list(
        self,
        context: str,
        path: str,
        normalizer: Callable[[RawRecord], Any],
        page: int,
        page_size: int | None,
        extra: Mapping[str, str] | None = None,
    ) -> Page[Any]:
        size = page_size if page_size is not None else default_page_size()
        params = {"page": str(page), "limit": str(size), **(extra or {})}
        body = await self._get(context, path, params)
        envelope = unwrap_envelope(body)
        if envelope is None:
            raise FetchError(context, ValueError(f"no row collection in response from {path}"))
        rows, skipped = _normalize_page_rows(envelope.rows, normalizer, context=context)
        total, resolved_page, total_pages = _pagination(envelope.meta, len(envelope.rows), page)
        _logger.info(
            "fetch:done context=%s page=%d rows=%d skipped=%d",
            context,
            resolved_page,
            len(rows),
            skipped,
        )
        return Page(
            rows=tuple(rows),
            total=total,
            page=resolved_page,
            total_pages=total_pages,
            skipped_count=skipped,
        )

    async def list_payrolls(
        self, *, page: int = 1, page_size: int | None = None, status: str | None = None
    ) -> Page[Payroll]:
        extra = {"status": status} if status else None
        return await self._list(
            "payrolls",
            self.PAYROLLS,
            lambda raw: normalize_payroll(raw, units=self.units),
            page,
            page_size,
            extra,
        )

    async def list_payroll_transactions(
        self, payroll_id: str, *, page: int = 1, page_size: int | None = None
    ) -> Page[PayrollTransaction]:
        return await self._list(
            "payroll_transactions",
            self.PAYROLL_TRANSACTIONS.format(payroll_id=payroll_id),
            lambda raw: normalize_payroll_transaction(raw, units=self.units),
            page,
            page_size,
        )

    async def list_farmers(
        self, *, page: int = 1, page_size: int | None = None, search: str | None = None
    ) -> Page[Farmer]:
        extra = {"search": search} if search else None
        return await self._list(
            "farmers",
            self.FARMERS,
            lambda raw: normalize_farmer(raw, units=self.units),
            page,
            page_size,
            extra,
        )

    async def get_farmer(self, farmer_id: str) -> Farmer:
        body = await self._get("farmer", self.FARMER.format(farmer_id=farmer_id))
        raw = _unwrap_object(body)
        if isinstance(raw, Mapping) and isinstance(raw.get("farmer"), Mapping):
            raw = raw["farmer"]
        try:
            return normalize_farmer(raw, units=self.units)
        except NormalizationError as exc:
            raise FetchError("farmer", exc) from exc

    async def get_financial_details(self, farmer_id: str) -> FinancialDetails:
        body = await self._get(
            "financial_status", self.FINANCIAL_STATUS.format(farmer_id=farmer_id)
        )
        try:
            details = normalize_financial_details(_unwrap_object(body), units=self.units)
        except NormalizationError as exc:
            raise FetchError("financial_status", exc) from exc
        if details.skipped_count:
            _logger.warning(
                "normalize:skip context=financial_status farmer_id=%s skipped=%d",
                farmer_id,
                details.skipped_count,
            )
        return details


__all__ = [
    "CATEGORY_ROUTES",
    "CategoryFetcher",
    "CategoryRecord",
    "DEFAULT_PAGE_SIZE",
    "RecordFetcher",
    "default_page_size",
    "fetch_all_pages",
    "unwrap_envelope",
]
