"""Ledger platform HTTP client for paginated listing endpoints"""

from typing import Any, Dict, Optional

import httpx

from ledger_gateway.config import settings
from ledger_gateway.domain.exceptions import FetchError
from ledger_gateway.infrastructure.clients.paging import FetchPage, PageResult, parse_rate_limit_headers
from ledger_gateway.infrastructure.observability.metrics import fetch_failures_counter, page_fetch_latency_histogram

CONTACTS = "Contacts"
INVOICES = "Invoices"
PAYMENTS = "Payments"
CREDIT_NOTES = "CreditNotes"
OVERPAYMENTS = "Overpayments"
PREPAYMENTS = "Prepayments"


class LedgerAPIClient:
    """Client for one tenant of the external ledger platform"""

    def __init__(
        self,
        access_token: str,
        tenant_id: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.access_token = access_token
        self.tenant_id = tenant_id
        self.base_url = (base_url or settings.ledger_api_base).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            settings.ledger_tenant_header: self.tenant_id,
            "Accept": "application/json",
        }

    async def list_page(
        self,
        endpoint: str,
        page: int,
        page_size: int,
        where: Optional[str] = None,
    ) -> PageResult:
        """
        Fetch one page of a listing endpoint.

        Raises:
            FetchError: On timeout, HTTP errors, or invalid response
        """
        params: Dict[str, Any] = {"page": page, "pageSize": page_size}
        if where:
            params["where"] = where

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with page_fetch_latency_histogram.labels(endpoint=endpoint).time():
                    response = await client.get(
                        f"{self.base_url}/{endpoint}",
                        params=params,
                        headers=self._headers(),
                    )
                response.raise_for_status()
                data = response.json()
                results = data.get(endpoint) or []
                if not isinstance(results, list):
                    raise TypeError(f"{endpoint} is not a list")
                return PageResult(results=results, headers=dict(response.headers))

            except httpx.TimeoutException as e:
                fetch_failures_counter.labels(endpoint=endpoint).inc()
                raise FetchError(f"Ledger API timeout after {self.timeout}s on {endpoint} page {page}") from e
            except httpx.HTTPStatusError as e:
                fetch_failures_counter.labels(endpoint=endpoint).inc()
                raise FetchError(
                    f"Ledger API error {e.response.status_code} on {endpoint} page {page}",
                    status_code=e.response.status_code,
                    rate_limit=parse_rate_limit_headers(e.response.headers),
                ) from e
            except httpx.RequestError as e:
                fetch_failures_counter.labels(endpoint=endpoint).inc()
                raise FetchError(f"Ledger API unreachable on {endpoint}: {e}") from e
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                fetch_failures_counter.labels(endpoint=endpoint).inc()
                raise FetchError(f"Invalid {endpoint} data from ledger API: {e}") from e

    def page_fetcher(self, endpoint: str, where: Optional[str] = None) -> FetchPage:
        """Bind endpoint and filter into a fetch_page(page, page_size) callback"""

        async def fetch_page(page: int, page_size: int) -> PageResult:
            return await self.list_page(endpoint, page, page_size, where=where)

        return fetch_page
