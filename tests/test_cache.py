"""Cache controller behavior: pure reads, coalescing, last-request-wins."""

import asyncio

import pytest
from pydantic import ValidationError

from agri_ledger.cache import CategoryCache, SlotState
from agri_ledger.ctv import Category
from agri_ledger.errors import TransportError
from agri_ledger.fetching import CategoryFetcher
from tests.helpers.transport_stub import FakeTransport, by_page, page_body, wallet_tx

WALLET = "/admin/transactions/wallet"
LOANS = "/admin/transactions/loans"
ALL = "/admin/transactions"


def _cache(transport: FakeTransport, **kwargs) -> CategoryCache:
    return CategoryCache(CategoryFetcher(transport), page_size=10, **kwargs)


def test_switching_back_to_a_ready_slot_is_a_pure_read():
    transport = (
        FakeTransport()
        .add(WALLET, page_body([wallet_tx("w1", 100)], total=1))
        .add(LOANS, page_body([wallet_tx("l1", 200, tx_type="loan_repayment")], total=1))
    )
    cache = _cache(transport)

    async def scenario():
        await cache.switch_category("wallet")
        await cache.switch_category("loan")
        return await cache.switch_category("wallet")

    view = asyncio.run(scenario())

    assert view.state is SlotState.READY
    assert [r.id for r in view.rows] == ["w1"]
    assert len(transport.calls_for(WALLET)) == 1
    assert len(transport.calls_for(LOANS)) == 1


def test_concurrent_requests_for_one_signature_are_coalesced():
    async def scenario():
        gate = asyncio.Event()
        transport = FakeTransport().add(WALLET, page_body([wallet_tx("w1", 100)]), gate=gate)
        cache = _cache(transport)

        first = asyncio.ensure_future(cache.switch_category("wallet"))
        second = asyncio.ensure_future(cache.switch_category("wallet"))
        await asyncio.sleep(0)
        assert cache.view("wallet").state is SlotState.LOADING
        gate.set()
        a, b = await asyncio.gather(first, second)
        return transport, a, b

    transport, a, b = asyncio.run(scenario())

    assert len(transport.calls_for(WALLET)) == 1
    assert a.rows == b.rows
    assert a.state is SlotState.READY


def test_slow_stale_response_does_not_overwrite_newer_page():
    async def scenario():
        gate_page2 = asyncio.Event()
        bodies = by_page(
            {
                1: page_body([wallet_tx("p1", 1)], page=1, total_pages=3),
                2: page_body([wallet_tx("p2", 2)], page=2, total_pages=3),
                3: page_body([wallet_tx("p3", 3)], page=3, total_pages=3),
            }
        )
        # Responses are consumed in call order; the page 2 response is held.
        transport = (
            FakeTransport()
            .add(WALLET, bodies)
            .add(WALLET, bodies, gate=gate_page2)
            .add(WALLET, bodies)
        )
        cache = _cache(transport, category="wallet")
        await cache.set_page(1)

        slow = asyncio.ensure_future(cache.set_page(2))
        await asyncio.sleep(0)
        fast_view = await cache.set_page(3)
        gate_page2.set()
        await slow
        return cache, fast_view

    cache, fast_view = asyncio.run(scenario())

    assert [r.id for r in fast_view.rows] == ["p3"]
    view = cache.view()
    assert view.state is SlotState.READY
    assert [r.id for r in view.rows] == ["p3"]
    assert view.page == 3
    assert view.stale is False


def test_filter_change_resets_page_and_refetches():
    transport = FakeTransport().add(WALLET, lambda params: page_body([wallet_tx(params["page"], 1)]))
    cache = _cache(transport, category="wallet")

    async def scenario():
        await cache.set_page(4)
        return await cache.set_filter(status="completed")

    view = asyncio.run(scenario())

    assert cache.page == 1
    assert view.page == 1
    assert transport.calls_for(WALLET)[-1]["status"] == "completed"
    assert transport.calls_for(WALLET)[-1]["page"] == "1"


def test_sort_change_invalidates_every_slot():
    transport = (
        FakeTransport()
        .add(WALLET, page_body([wallet_tx("w1", 1)]))
        .add(LOANS, page_body([wallet_tx("l1", 1)]))
    )
    cache = _cache(transport)

    async def scenario():
        await cache.switch_category("loan")
        await cache.switch_category("wallet")
        sig_before = cache.signature
        await cache.set_filter(sort_order="asc")
        assert cache.signature == sig_before  # sort is not part of the signature
        assert cache.view("loan").state is SlotState.EMPTY
        await cache.switch_category("loan")

    asyncio.run(scenario())

    assert len(transport.calls_for(WALLET)) == 2
    assert len(transport.calls_for(LOANS)) == 2
    assert transport.calls_for(LOANS)[-1]["sortOrder"] == "asc"


def test_unknown_filter_key_is_rejected():
    cache = _cache(FakeTransport())
    with pytest.raises(ValidationError):
        asyncio.run(cache.set_filter(colour="green"))


def test_failed_refetch_keeps_last_good_page_and_marks_it_stale():
    transport = (
        FakeTransport()
        .add(WALLET, page_body([wallet_tx("w1", 100)], total=1))
        .add(WALLET, TransportError(500, "boom"))
    )
    cache = _cache(transport, category="wallet")

    async def scenario():
        await cache.set_page(1)
        return await cache.set_filter(search="ada")

    view = asyncio.run(scenario())

    assert view.state is SlotState.ERROR
    assert view.error is not None and view.error.category == "wallet"
    assert [r.id for r in view.rows] == ["w1"]
    assert view.stale is True
    assert view.is_empty is False


def test_zero_rows_is_an_empty_state_not_an_error():
    transport = FakeTransport().add(ALL, page_body([], total=0))
    view = asyncio.run(_cache(transport).set_page(1))
    assert view.state is SlotState.READY
    assert view.is_empty is True
    assert view.error is None


def test_first_fetch_failure_has_no_rows_and_is_not_empty():
    transport = FakeTransport().add(ALL, TransportError(None, "connection refused"))
    view = asyncio.run(_cache(transport).set_page(1))
    assert view.state is SlotState.ERROR
    assert view.rows == ()
    assert view.is_empty is False
    assert view.stale is False


def test_invalidate_and_refresh_refetch():
    transport = FakeTransport().add(WALLET, page_body([wallet_tx("w1", 1)]))
    cache = _cache(transport, category=Category.WALLET)

    async def scenario():
        await cache.set_page(1)
        cache.invalidate("wallet")
        assert cache.view().state is SlotState.EMPTY
        await cache.set_page(1)
        await cache.refresh()

    asyncio.run(scenario())
    assert len(transport.calls_for(WALLET)) == 3


def test_result_arriving_after_invalidate_is_discarded():
    async def scenario():
        gate = asyncio.Event()
        transport = FakeTransport().add(WALLET, page_body([wallet_tx("old", 1)]), gate=gate)
        cache = _cache(transport, category="wallet")
        pending = asyncio.ensure_future(cache.set_page(1))
        await asyncio.sleep(0)
        cache.invalidate()
        gate.set()
        await pending
        return cache

    cache = asyncio.run(scenario())
    assert cache.view().state is SlotState.EMPTY
    assert cache.view().rows == ()


def test_failed_refresh_keeps_last_good_page():
    transport = (
        FakeTransport()
        .add(WALLET, page_body([wallet_tx("w1", 100)], total=1))
        .add(WALLET, TransportError(503, "maintenance"))
    )
    cache = _cache(transport, category="wallet")

    async def scenario():
        await cache.set_page(1)
        return await cache.refresh()

    view = asyncio.run(scenario())

    assert view.state is SlotState.ERROR
    assert [r.id for r in view.rows] == ["w1"]
    assert view.stale is True
    assert len(transport.calls_for(WALLET)) == 2


def test_sort_change_keeps_other_tabs_on_display_as_stale():
    transport = (
        FakeTransport()
        .add(WALLET, page_body([wallet_tx("w1", 1)]))
        .add(LOANS, page_body([wallet_tx("l1", 1)]))
    )
    cache = _cache(transport)

    async def scenario():
        await cache.switch_category("loan")
        await cache.switch_category("wallet")
        await cache.set_filter(sort_by="amount")

    asyncio.run(scenario())

    loan = cache.view("loan")
    assert [r.id for r in loan.rows] == ["l1"]
    assert loan.stale is True


def test_row_with_out_of_range_timestamp_does_not_abort_the_page():
    rows = [wallet_tx("w1", 100), wallet_tx("w2", 200, createdAt=1e20)]
    transport = FakeTransport().add(WALLET, page_body(rows, total=2))
    view = asyncio.run(_cache(transport, category="wallet").set_page(1))
    assert view.state is SlotState.READY
    assert [r.id for r in view.rows] == ["w1", "w2"]
    assert view.rows[1].created_at is None


class _FailOnceFetcher(CategoryFetcher):
    def __init__(self, transport):
        super().__init__(transport)
        self.failures = 1

    async def fetch(self, *args, **kwargs):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("unexpected row shape")
        return await super().fetch(*args, **kwargs)


def test_unexpected_fetch_exception_does_not_wedge_the_slot():
    transport = FakeTransport().add(WALLET, page_body([wallet_tx("w1", 1)]))
    cache = CategoryCache(_FailOnceFetcher(transport), category="wallet", page_size=10)

    async def scenario():
        with pytest.raises(RuntimeError):
            await cache.set_page(1)
        assert cache.view().state is SlotState.EMPTY
        assert cache.slot("wallet").inflight == {}
        return await cache.set_page(1)

    view = asyncio.run(scenario())

    assert view.state is SlotState.READY
    assert [r.id for r in view.rows] == ["w1"]
    assert len(transport.calls_for(WALLET)) == 1


def test_cancelled_caller_does_not_cancel_the_shared_fetch():
    async def scenario():
        gate = asyncio.Event()
        transport = FakeTransport().add(WALLET, page_body([wallet_tx("w1", 1)]), gate=gate)
        cache = _cache(transport, category="wallet")
        first = asyncio.ensure_future(cache.set_page(1))
        second = asyncio.ensure_future(cache.set_page(1))
        await asyncio.sleep(0)
        first.cancel()
        await asyncio.sleep(0)
        gate.set()
        view = await second
        return transport, cache, first, view

    transport, cache, first, view = asyncio.run(scenario())

    assert first.cancelled()
    assert view.state is SlotState.READY
    assert [r.id for r in view.rows] == ["w1"]
    assert cache.slot("wallet").inflight == {}
    assert len(transport.calls_for(WALLET)) == 1
