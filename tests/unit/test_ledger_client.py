"""Unit tests for the ledger API and OAuth token clients"""

from datetime import timedelta

import httpx
import pytest

from ledger_gateway.domain.exceptions import AuthExpiredError, FetchError, TokenRefreshError
from ledger_gateway.infrastructure.clients.ledger import INVOICES, LedgerAPIClient
from ledger_gateway.infrastructure.clients.oauth import TokenClient
from ledger_gateway.utils.date_utils import utcnow

BASE_URL = "https://ledger.test/api.xro/2.0"


def _client(handler) -> LedgerAPIClient:
    return LedgerAPIClient("token-abc", "tenant-1", base_url=BASE_URL, transport=httpx.MockTransport(handler))


async def test_list_page_sends_paging_filter_and_auth_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["headers"] = request.headers
        return httpx.Response(
            200,
            json={"Invoices": [{"InvoiceID": "i-1"}]},
            headers={"X-MinLimit-Remaining": "58"},
        )

    page = await _client(handler).list_page(INVOICES, 2, 50, where="Date >= DateTime(2023, 06, 30)")

    assert page.results == [{"InvoiceID": "i-1"}]
    assert page.headers["x-minlimit-remaining"] == "58"
    assert seen["url"].path == "/api.xro/2.0/Invoices"
    assert seen["url"].params["page"] == "2"
    assert seen["url"].params["pageSize"] == "50"
    assert seen["url"].params["where"] == "Date >= DateTime(2023, 06, 30)"
    assert seen["headers"]["Authorization"] == "Bearer token-abc"
    assert seen["headers"]["Xero-Tenant-Id"] == "tenant-1"


async def test_missing_result_key_is_an_empty_page():
    page = await _client(lambda request: httpx.Response(200, json={})).list_page(INVOICES, 1, 100)
    assert page.results == []


async def test_rate_limited_response_raises_fetch_error_with_limits():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "12", "X-Rate-Limit-Problem": "minute"})

    with pytest.raises(FetchError) as exc_info:
        await _client(handler).list_page(INVOICES, 1, 100)

    assert exc_info.value.status_code == 429
    assert exc_info.value.rate_limit.retry_after == 12
    assert exc_info.value.rate_limit.problem == "minute"


async def test_timeout_raises_fetch_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(FetchError, match="timeout"):
        await _client(handler).list_page(INVOICES, 1, 100)


async def test_non_list_payload_raises_fetch_error():
    with pytest.raises(FetchError, match="Invalid"):
        await _client(lambda request: httpx.Response(200, json={"Invoices": {"oops": 1}})).list_page(INVOICES, 1, 100)


async def test_page_fetcher_binds_endpoint_and_filter():
    calls = []

    def handler(request):
        calls.append(dict(request.url.params))
        return httpx.Response(200, json={"Invoices": []})

    fetch_page = _client(handler).page_fetcher(INVOICES, where="Date >= DateTime(2024, 01, 01)")
    await fetch_page(3, 25)

    assert calls == [{"page": "3", "pageSize": "25", "where": "Date >= DateTime(2024, 01, 01)"}]


# --- Token client ---


def _token_client(handler) -> TokenClient:
    return TokenClient(
        token_url="https://identity.test/connect/token",
        client_id="client",
        client_secret="secret",
        transport=httpx.MockTransport(handler),
    )


async def test_refresh_returns_new_token_set():
    def handler(request):
        assert request.headers["Authorization"].startswith("Basic ")
        assert b"grant_type=refresh_token" in request.content
        return httpx.Response(200, json={"access_token": "new", "refresh_token": "rotated", "expires_in": 1800})

    tokens = await _token_client(handler).refresh("old-refresh")

    assert tokens.access_token == "new"
    assert tokens.refresh_token == "rotated"
    assert utcnow() + timedelta(seconds=1700) < tokens.expires_at <= utcnow() + timedelta(seconds=1800)


async def test_refresh_keeps_refresh_token_when_not_rotated():
    tokens = await _token_client(
        lambda request: httpx.Response(200, json={"access_token": "new", "expires_in": 60})
    ).refresh("keep-me")
    assert tokens.refresh_token == "keep-me"


@pytest.mark.parametrize("status", [400, 401])
async def test_rejected_refresh_token_is_auth_expired(status):
    with pytest.raises(AuthExpiredError):
        await _token_client(lambda request: httpx.Response(status, json={"error": "invalid_grant"})).refresh("r")


async def test_server_error_is_temporary_refresh_failure():
    with pytest.raises(TokenRefreshError):
        await _token_client(lambda request: httpx.Response(503)).refresh("r")


async def test_malformed_token_response_is_refresh_failure():
    with pytest.raises(TokenRefreshError):
        await _token_client(lambda request: httpx.Response(200, json={"token": "x"})).refresh("r")
