"""Unit tests for the paginated fetch primitive and tenant gates"""

import asyncio

import pytest

from ledger_gateway.domain.exceptions import FetchError
from ledger_gateway.infrastructure.clients.paging import (
    PageResult,
    TenantGateRegistry,
    fetch_all_pages,
    parse_rate_limit_headers,
)


def _pages(*pages):
    """fetch_page serving the given pages, then empty pages; records every call"""
    calls = []

    async def fetch_page(page, page_size):
        calls.append((page, page_size))
        if page <= len(pages):
            return PageResult(results=list(pages[page - 1]))
        return PageResult(results=[])

    return fetch_page, calls


async def test_concatenates_pages_in_order_until_empty_page(gates):
    fetch_page, calls = _pages([1, 2], [3, 4], [5])

    results = await fetch_all_pages(fetch_page, tenant_id="t1", gates=gates, page_size=2)

    assert results == [1, 2, 3, 4, 5]
    assert calls == [(1, 2), (2, 2), (3, 2), (4, 2)]


async def test_limit_truncates_and_stops_fetching(gates):
    fetch_page, calls = _pages([1, 2, 3], [4, 5, 6], [7, 8, 9])

    results = await fetch_all_pages(fetch_page, tenant_id="t1", gates=gates, page_size=3, limit=4)

    assert results == [1, 2, 3, 4]
    assert [page for page, _ in calls] == [1, 2]


@pytest.mark.parametrize("requested,effective", [(0, 1), (-5, 1), (5000, 1000), (250, 250)])
async def test_page_size_is_clamped(gates, requested, effective):
    fetch_page, calls = _pages()

    await fetch_all_pages(fetch_page, tenant_id="t1", gates=gates, page_size=requested)

    assert calls == [(1, effective)]


async def test_errors_propagate_without_retry(gates):
    calls = []

    async def fetch_page(page, page_size):
        calls.append(page)
        if page == 2:
            raise FetchError("Ledger API error 500 on Invoices page 2", status_code=500)
        return PageResult(results=[page])

    with pytest.raises(FetchError):
        await fetch_all_pages(fetch_page, tenant_id="t1", gates=gates)

    assert calls == [1, 2]


async def test_slot_released_after_error():
    gates = TenantGateRegistry(max_concurrent=1)

    async def failing(page, page_size):
        raise FetchError("boom")

    with pytest.raises(FetchError):
        await fetch_all_pages(failing, tenant_id="t1", gates=gates)

    assert not gates.gate("t1").locked()


async def test_gate_caps_in_flight_calls_per_tenant():
    gates = TenantGateRegistry(max_concurrent=2)
    in_flight = 0
    peak = 0

    async def slow_fetch(page, page_size):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return PageResult(results=[] if page > 1 else ["x"])

    await asyncio.gather(
        *(fetch_all_pages(slow_fetch, tenant_id="t1", gates=gates) for _ in range(6))
    )

    assert peak == 2


async def test_independent_registries_do_not_share_gates():
    first, second = TenantGateRegistry(max_concurrent=1), TenantGateRegistry(max_concurrent=1)

    async with first.slot("t1"):
        assert first.gate("t1").locked()
        assert not second.gate("t1").locked()
        assert not first.gate("t2").locked()


def test_rate_limit_headers_are_case_insensitive():
    info = parse_rate_limit_headers(
        {"x-minlimit-remaining": "4", "X-DAYLIMIT-REMAINING": "900", "Retry-After": "30", "X-Rate-Limit-Problem": "Minute"}
    )

    assert info.minute_remaining == 4
    assert info.day_remaining == 900
    assert info.retry_after == 30
    assert info.problem == "minute"


def test_rate_limit_headers_absent_or_malformed():
    assert parse_rate_limit_headers(None).minute_remaining is None
    info = parse_rate_limit_headers({"X-MinLimit-Remaining": "n/a", "X-Rate-Limit-Problem": "hour"})
    assert info.minute_remaining is None
    assert info.problem is None
