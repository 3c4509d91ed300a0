"""
E2E test: sync against the mock ledger server, then read the analytics API.

The mock ledger (mock/ledger_server) is served in-process over ASGI, so the
real HTTP clients, pagination, where filter and token refresh are exercised
without a running container. Fixtures live in mock/ledger_stub:

- c-0001 Acme Retail: INV-001 91 days overdue, INV-002 part paid and credited
- c-0002 Bluegum Cafe: INV-003 paid late, INV-OLD outside the sync window
- c-0003 Harbour Freight: BILL-100 and BILL-101 due 2025-07-05
- p-0003 and op-0001 reference nothing mirrored and are skipped
"""

from datetime import date, timedelta

import httpx
import pytest
from httpx import AsyncClient
from ledger_server.main import app as ledger_app
from sqlalchemy import select

from ledger_gateway.domain.exceptions import AuthExpiredError
from ledger_gateway.infrastructure.clients.ledger import LedgerAPIClient
from ledger_gateway.infrastructure.clients.oauth import TokenClient, TokenSet
from ledger_gateway.infrastructure.database.models import LedgerConnection, LedgerEntry
from ledger_gateway.services.connections import ConnectionResolver
from ledger_gateway.services.sync import SyncOrchestrator
from ledger_gateway.utils.date_utils import utcnow

pytestmark = pytest.mark.e2e

USER = "user-1"
HEADERS = {"X-User-Id": USER}
AS_OF = date(2025, 6, 30)
MOCK_URL = "http://mock-ledger"


def _transport() -> httpx.ASGITransport:
    return httpx.ASGITransport(app=ledger_app)


def _resolver(db) -> ConnectionResolver:
    return ConnectionResolver(
        db,
        token_client=TokenClient(
            token_url=f"{MOCK_URL}/connect/token", client_id="id", client_secret="secret", transport=_transport()
        ),
        client_factory=lambda token, tenant: LedgerAPIClient(
            token, tenant, base_url=f"{MOCK_URL}/api.xro/2.0", transport=_transport()
        ),
    )


async def _connect(resolver, refresh_token="rt-1", expires_in=timedelta(minutes=-1)):
    # Expired access token: every sync starts with a refresh
    await resolver.connect(
        USER,
        "tenant-mock",
        TokenSet(access_token="stale", refresh_token=refresh_token, expires_at=utcnow() + expires_in),
    )


async def test_sync_mirrors_mock_ledger(db, gates):
    resolver = _resolver(db)
    await _connect(resolver)

    report = await SyncOrchestrator(db, resolver, gates=gates, page_size=2, as_of=AS_OF).run(USER)

    counts = report.counts()
    assert counts["contacts"]["created"] == 3
    assert counts["ledger_entries"]["created"] == 5
    assert counts["payments"] == {"created": 2, "updated": 0, "skipped": 1, "failed": 0}
    assert counts["credit_notes"]["created"] == 1
    assert counts["overpayments"]["skipped"] == 1
    assert counts["prepayments"] == {"created": 0, "updated": 0, "skipped": 0, "failed": 0}
    assert counts["customer_history"]["created"] == 2
    assert report.success

    numbers = {e.number for e in (await db.execute(select(LedgerEntry))).scalars().all()}
    assert "INV-OLD" not in numbers

    connection = (await db.execute(select(LedgerConnection))).scalar_one()
    assert connection.access_token == "access-rt-1"
    assert connection.refresh_token == "rt-1-rotated"


async def test_resync_is_idempotent(db, gates):
    resolver = _resolver(db)
    await _connect(resolver)

    await SyncOrchestrator(db, resolver, gates=gates, as_of=AS_OF).run(USER)
    second = await SyncOrchestrator(db, resolver, gates=gates, as_of=AS_OF).run(USER)

    counts = second.counts()
    assert counts["contacts"] == {"created": 0, "updated": 3, "skipped": 0, "failed": 0}
    assert counts["ledger_entries"] == {"created": 0, "updated": 5, "skipped": 0, "failed": 0}
    assert counts["payments"]["created"] == 0
    assert counts["credit_notes"]["updated"] == 1
    assert len((await db.execute(select(LedgerEntry))).scalars().all()) == 5


async def test_revoked_refresh_token_requires_reconnect(db, gates):
    resolver = _resolver(db)
    await _connect(resolver, refresh_token="revoked")

    with pytest.raises(AuthExpiredError):
        await SyncOrchestrator(db, resolver, gates=gates, as_of=AS_OF).run(USER)

    assert await resolver.connections.get_active(USER) is None


async def test_analytics_over_synced_mirror(db, gates, client: AsyncClient):
    resolver = _resolver(db)
    await _connect(resolver)
    await SyncOrchestrator(db, resolver, gates=gates, as_of=AS_OF).run(USER)

    ageing = (await client.get("/v1/ageing-report", params={"asOf": "2025-06-30"}, headers=HEADERS)).json()
    # INV-001 1100 at 91 days; INV-002 2200 - 500 paid - 200 credited at 30 days
    assert ageing["summary"]["totalOutstanding"] == 2600.0
    buckets = {b["label"]: b["totalOutstanding"] for b in ageing["buckets"]}
    assert buckets["0-30 days"] == 1500.0
    assert buckets["90+ days"] == 1100.0

    forecast = (
        await client.get(
            "/v1/payment-schedule", params={"startDate": "2025-07-01", "endDate": "2025-07-31"}, headers=HEADERS
        )
    ).json()
    assert forecast["summary"]["totalBills"] == 2
    assert forecast["summary"]["totalAmount"] == 800.0

    acme = next(c for c in ageing["contacts"] if c["contactName"] == "Acme Retail Pty Ltd")
    history = (await client.get(f"/v1/customers/{acme['contactId']}/history", headers=HEADERS)).json()
    assert history["history"]["numInvoices"] == 2
    assert history["history"]["totalOutstanding"] == 2600.0
    assert history["riskLevel"] == "medium"
