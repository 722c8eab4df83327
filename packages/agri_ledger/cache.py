"""Per-category page cache with request coalescing and stale-result discard.

One :class:`CacheSlot` per category holds the last good page for that tab.
The :class:`CategoryCache` controller owns the shared filter state (filters,
page, active category) and decides when a slot needs a fetch.

Slot state machine::

    EMPTY --load--> LOADING --ok--> READY --signature change--> LOADING
                       |
                       +--FetchError--> ERROR (previous READY entry kept, stale)

Rules
-----
- Switching to a READY slot whose entry signature matches the current filter
  signature is a pure read: no transport call.
- At most one in-flight fetch exists per ``(slot, signature)``. A second
  request for the same signature awaits the same task.
- Last request wins: a completed fetch is applied only if its signature still
  equals the slot's latest requested signature and the slot has not been
  invalidated since. Superseded fetches run to completion and their results
  are dropped (``cache:discard_stale``).
- Sort fields are not part of the filter signature, so a sort change
  invalidates every slot.
- Invalidation never clears a slot's last good page. The page stays on
  display, marked stale, until a refetch replaces it.

Single event loop; slot mutation happens on the loop thread only.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from .ctv import Category
from .errors import FetchError
from .fetching import CategoryFetcher, CategoryRecord
from .logging_setup import get_logger
from .models import Page, TransactionFilters

_logger = get_logger("agri_ledger.cache")

class SlotState(StrEnum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    rows: tuple[CategoryRecord, ...]
    total: int
    page: int
    total_pages: int
    fetched_at_filter_signature: str
    skipped_count: int
    fetched_at: datetime
    generation: int = 0


@dataclass(slots=True)
class CacheSlot:
    category: Category
    state: SlotState = SlotState.EMPTY
    entry: CacheEntry | None = None
    requested_signature: str | None = None
    error: FetchError | None = None
    generation: int = 0
    inflight: dict[str, asyncio.Task[None]] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SlotView:
    """Read-only snapshot of one slot for the view layer.

    ``stale`` is set when the rows on display do not belong to the latest
    request (a fetch failed or is still running for newer filters).
    ``is_empty`` is only true for a successful zero-row result, never for an
    error.
    """

    category: Category
    state: SlotState
    rows: tuple[CategoryRecord, ...]
    total: int
    page: int
    total_pages: int
    skipped_count: int
    stale: bool
    error: FetchError | None
    fetched_at: datetime | None

    @property
    def loading(self) -> bool:
        return self.state is SlotState.LOADING

    @property
    def is_empty(self) -> bool:
        return self.state is SlotState.READY and not self.rows


class CategoryCache:
    """Controller for the multi-category transaction listing.

    Usage
    -----
    cache = CategoryCache(CategoryFetcher(transport))
    view = await cache.switch_category("wallet")
    view = await cache.set_filter(status="completed")  # back to page 1
    view = await cache.set_page(2)
    """

    def __init__(
        self,
        fetcher: CategoryFetcher,
        *,
        category: Category | str = Category.ALL,
        filters: TransactionFilters | None = None,
        page_size: int | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.page_size = page_size
        self._active = Category(category)
        self._filters = filters or TransactionFilters()
        self._page = 1
        self._slots: dict[Category, CacheSlot] = {c: CacheSlot(category=c) for c in Category}

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def active_category(self) -> Category:
        return self._active

    @property
    def filters(self) -> TransactionFilters:
        return self._filters

    @property
    def page(self) -> int:
        return self._page

    @property
    def signature(self) -> str:
        return self._filters.signature(self._page)

    def slot(self, category: Category | str) -> CacheSlot:
        return self._slots[Category(category)]

    def view(self, category: Category | str | None = None) -> SlotView:
        slot = self._slots[Category(category) if category is not None else self._active]
        entry = slot.entry
        stale = entry is not None and (
            slot.state is SlotState.ERROR
            or entry.generation != slot.generation
            or entry.fetched_at_filter_signature != slot.requested_signature
        )
        if entry is None:
            return SlotView(
                category=slot.category,
                state=slot.state,
                rows=(),
                total=0,
                page=self._page,
                total_pages=0,
                skipped_count=0,
                stale=False,
                error=slot.error,
                fetched_at=None,
            )
        return SlotView(
            category=slot.category,
            state=slot.state,
            rows=entry.rows,
            total=entry.total,
            page=entry.page,
            total_pages=entry.total_pages,
            skipped_count=entry.skipped_count,
            stale=stale,
            error=slot.error,
            fetched_at=entry.fetched_at,
        )

    # ------------------------------------------------------------------
    # Controller operations
    # ------------------------------------------------------------------

    async def switch_category(self, category: Category | str) -> SlotView:
        self._active = Category(category)
        return await self._ensure(self._active)

    async def set_page(self, page: int) -> SlotView:
        if page < 1:
            raise ValueError("page must be >= 1")
        self._page = page
        return await self._ensure(self._active)

    async def set_filter(self, **changes: Any) -> SlotView:
        """Apply filter changes and load the active slot.

        ``page`` may be passed alongside filter keys; any other change resets
        the page to 1. Unknown keys are rejected by :class:`TransactionFilters`.
        """

        page = changes.pop("page", None)
        if changes:
            data = self._filters.model_dump()
            data.update(changes)
            new_filters = TransactionFilters.model_validate(data)
            sort_changed = (new_filters.sort_by, new_filters.sort_order) != (
                self._filters.sort_by,
                self._filters.sort_order,
            )
            filters_changed = new_filters != self._filters
            self._filters = new_filters
            if sort_changed:
                self.invalidate()
            if filters_changed:
                self._page = 1
        if page is not None:
            if page < 1:
                raise ValueError("page must be >= 1")
            self._page = int(page)
        return await self._ensure(self._active)

    def invalidate(self, category: Category | str | None = None) -> None:
        """Force the next access to refetch.

        The last good page is kept and reported as stale until replaced.
        In-flight fetches for an invalidated slot still complete, but their
        results are discarded.
        """

        targets = [Category(category)] if category is not None else list(self._slots)
        for c in targets:
            slot = self._slots[c]
            slot.generation += 1
            slot.error = None
            slot.requested_signature = None
            slot.state = SlotState.EMPTY
            slot.inflight.clear()

    async def refresh(self) -> SlotView:
        self.invalidate(self._active)
        return await self._ensure(self._active)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _ensure(self, category: Category) -> SlotView:
        slot = self._slots[category]
        sig = self.signature
        entry = slot.entry
        if (
            slot.state in (SlotState.READY, SlotState.LOADING)
            and entry is not None
            and entry.generation == slot.generation
            and entry.fetched_at_filter_signature == sig
        ):
            # Back to the page on display: supersede whatever is in flight.
            slot.requested_signature = sig
            slot.state = SlotState.READY
            return self.view(category)

        slot.requested_signature = sig
        task = slot.inflight.get(sig)
        if task is None:
            slot.state = SlotState.LOADING
            task = asyncio.ensure_future(
                self._fetch_and_apply(slot, sig, self._filters, self._page, slot.generation)
            )
            slot.inflight[sig] = task
        else:
            _logger.debug("cache:coalesced category=%s signature=%s", category.value, sig)
        # Shielded so one cancelled caller does not cancel the shared fetch.
        await asyncio.shield(task)
        return self.view(category)

    def _is_current(self, slot: CacheSlot, sig: str, generation: int) -> bool:
        return slot.generation == generation and slot.requested_signature == sig

    async def _fetch_and_apply(
        self,
        slot: CacheSlot,
        sig: str,
        filters: TransactionFilters,
        page: int,
        generation: int,
    ) -> None:
        try:
            result: Page[CategoryRecord] = await self.fetcher.fetch(
                slot.category, filters, page=page, page_size=self.page_size
            )
        except FetchError as exc:
            if not self._is_current(slot, sig, generation):
                _logger.info(
                    "cache:discard_stale category=%s signature=%s outcome=error",
                    slot.category.value,
                    sig,
                )
                return
            slot.state = SlotState.ERROR
            slot.error = exc
            _logger.warning(
                "cache:error category=%s signature=%s kept_entry=%s error=%s",
                slot.category.value,
                sig,
                slot.entry is not None,
                exc,
            )
            return
        except Exception:
            if self._is_current(slot, sig, generation):
                slot.state = SlotState.READY if slot.entry is not None else SlotState.EMPTY
            raise
        finally:
            self._release(slot, sig, generation)

        if not self._is_current(slot, sig, generation):
            _logger.info(
                "cache:discard_stale category=%s signature=%s outcome=ok",
                slot.category.value,
                sig,
            )
            return
        slot.entry = CacheEntry(
            rows=result.rows,
            total=result.total,
            page=result.page,
            total_pages=result.total_pages,
            fetched_at_filter_signature=sig,
            skipped_count=result.skipped_count,
            fetched_at=datetime.now(UTC),
            generation=generation,
        )
        slot.state = SlotState.READY
        slot.error = None

    @staticmethod
    def _release(slot: CacheSlot, sig: str, generation: int) -> None:
        # An invalidated slot may already hold a newer task under the same key.
        if slot.generation == generation:
            slot.inflight.pop(sig, None)


__all__ = [
    "CacheEntry",
    "CacheSlot",
    "CategoryCache",
    "SlotState",
    "SlotView",
]
