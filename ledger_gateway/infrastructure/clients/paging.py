"""Per-tenant concurrency gates and the paginated fetch primitive"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional

from ledger_gateway.config import settings

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000


@dataclass
class PageResult:
    """One page of a listing endpoint"""

    results: List[Any]
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass
class RateLimitInfo:
    """Rate limit headers reported by the ledger platform"""

    minute_remaining: Optional[int] = None
    day_remaining: Optional[int] = None
    retry_after: Optional[int] = None
    problem: Optional[str] = None  # "minute" | "day"


FetchPage = Callable[[int, int], Awaitable[PageResult]]


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    lower = name.lower()
    for key, value in headers.items():
        if key.lower() == lower:
            return value
    return None


def _int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = _header(headers, name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_rate_limit_headers(headers: Optional[Mapping[str, str]]) -> RateLimitInfo:
    """Extract X-MinLimit-Remaining, X-DayLimit-Remaining, Retry-After and X-Rate-Limit-Problem"""
    if not headers:
        return RateLimitInfo()
    problem = _header(headers, "X-Rate-Limit-Problem")
    return RateLimitInfo(
        minute_remaining=_int_header(headers, "X-MinLimit-Remaining"),
        day_remaining=_int_header(headers, "X-DayLimit-Remaining"),
        retry_after=_int_header(headers, "Retry-After"),
        problem=problem.lower() if problem and problem.lower() in ("minute", "day") else None,
    )


def log_rate_limit(tenant_id: str, info: RateLimitInfo) -> None:
    """Warn when close to the platform limits; backoff is left to callers"""
    extra = {
        "tenant_id": tenant_id,
        "minute_remaining": info.minute_remaining,
        "day_remaining": info.day_remaining,
    }
    if info.minute_remaining is not None and info.minute_remaining <= 10:
        logger.warning("Approaching per-minute rate limit", extra=extra)
    elif info.day_remaining is not None and info.day_remaining <= 100:
        logger.warning("Approaching daily rate limit", extra=extra)
    elif info.minute_remaining is not None or info.day_remaining is not None:
        logger.debug("Rate limit status", extra=extra)


class TenantGateRegistry:
    """Owns one semaphore per tenant capping simultaneous in-flight calls"""

    def __init__(self, max_concurrent: int | None = None):
        self.max_concurrent = max_concurrent or settings.max_concurrent_requests
        self._gates: Dict[str, asyncio.Semaphore] = {}

    def gate(self, tenant_id: str) -> asyncio.Semaphore:
        if tenant_id not in self._gates:
            self._gates[tenant_id] = asyncio.Semaphore(self.max_concurrent)
        return self._gates[tenant_id]

    @asynccontextmanager
    async def slot(self, tenant_id: str) -> AsyncIterator[None]:
        """Hold one concurrency slot; released on exit, including on error"""
        gate = self.gate(tenant_id)
        await gate.acquire()
        try:
            yield
        finally:
            gate.release()


# Process-wide registry used by the service; tests build their own
default_gates = TenantGateRegistry()


async def fetch_all_pages(
    fetch_page: FetchPage,
    *,
    tenant_id: str,
    gates: TenantGateRegistry,
    page_size: int = 100,
    limit: Optional[int] = None,
) -> List[Any]:
    """
    Drain a paginated listing endpoint into a single list.

    - Pages are requested in order, starting at 1, each awaited before the next
    - Every call holds a tenant slot for its duration
    - Stops at the first empty page or once `limit` items are collected
    - Errors from fetch_page propagate immediately (no retry)
    """
    effective_page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    effective_limit = limit if limit and limit > 0 else None

    results: List[Any] = []
    page = 1
    while effective_limit is None or len(results) < effective_limit:
        async with gates.slot(tenant_id):
            response = await fetch_page(page, effective_page_size)

        log_rate_limit(tenant_id, parse_rate_limit_headers(response.headers))

        if not response.results:
            break
        results.extend(response.results)
        page += 1

    if effective_limit is not None:
        return results[:effective_limit]
    return results
