"""Pytest fixtures for testing"""

import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ledger_gateway.api.main import create_app
from ledger_gateway.domain.models import PAYABLE, RECEIVABLE, EntryView
from ledger_gateway.infrastructure.clients.paging import PageResult, TenantGateRegistry
from ledger_gateway.infrastructure.database.models import Base
from ledger_gateway.infrastructure.database.session import get_db
from ledger_gateway.services.connections import ConnectionHandle

# Test database
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

AS_OF = date(2025, 6, 30)


@pytest.fixture
async def engine():
    """Create test database schema for the duration of one test"""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(db: AsyncSession):
    """FastAPI app bound to the test database session"""
    app = create_app()

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """App served in-process over ASGI"""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


# --- Ledger platform fakes ---


class FakeLedgerClient:
    """In-memory ledger listing endpoints, paginated like the real API"""

    def __init__(self, data: Dict[str, List[dict]], failures: Optional[Dict[str, Exception]] = None):
        self.data = data
        self.failures = failures or {}
        self.calls: List[tuple] = []

    def page_fetcher(self, endpoint: str, where: Optional[str] = None):
        async def fetch_page(page: int, page_size: int) -> PageResult:
            self.calls.append((endpoint, page, page_size, where))
            if endpoint in self.failures:
                raise self.failures[endpoint]
            records = self.data.get(endpoint, [])
            start = (page - 1) * page_size
            return PageResult(results=records[start:start + page_size])

        return fetch_page


class FakeResolver:
    """Resolves every user to the same in-memory client"""

    def __init__(self, client: FakeLedgerClient, tenant_id: str = "tenant-1"):
        self.client = client
        self.tenant_id = tenant_id

    async def resolve(self, user_id: str) -> ConnectionHandle:
        return ConnectionHandle(client=self.client, tenant_id=self.tenant_id, connection_id=uuid.uuid4())


@pytest.fixture
def fake_ledger():
    """Factory: fake_ledger(data, failures=None) -> (client, resolver)"""

    def build(data: Dict[str, List[dict]], failures: Optional[Dict[str, Exception]] = None):
        client = FakeLedgerClient(data, failures)
        return client, FakeResolver(client)

    return build


@pytest.fixture
def gates() -> TenantGateRegistry:
    return TenantGateRegistry(max_concurrent=5)


# --- Platform payload builders ---


def contact_payload(ref: str, name: str, customer: bool = True, bank: Optional[str] = None) -> dict:
    return {
        "ContactID": ref,
        "Name": name,
        "ContactStatus": "ACTIVE",
        "IsCustomer": customer,
        "IsSupplier": not customer,
        "BankAccountDetails": bank,
    }


def invoice_payload(
    ref: str,
    contact_ref: str,
    total: float,
    issued: date,
    due: date,
    paid: float = 0.0,
    credited: float = 0.0,
    status: str = "AUTHORISED",
    entry_type: str = RECEIVABLE,
    number: Optional[str] = None,
) -> dict:
    return {
        "InvoiceID": ref,
        "Type": entry_type,
        "InvoiceNumber": number or ref.upper(),
        "Contact": {"ContactID": contact_ref},
        "Date": issued.isoformat(),
        "DueDate": due.isoformat(),
        "Status": status,
        "Total": total,
        "SubTotal": total,
        "TotalTax": 0,
        "AmountPaid": paid,
        "AmountCredited": credited,
    }


def payment_payload(
    ref: str, invoice_ref: str, amount: float, paid_on: date, invoice_type: Optional[str] = None
) -> dict:
    invoice = {"InvoiceID": invoice_ref}
    if invoice_type:
        invoice["Type"] = invoice_type
    return {
        "PaymentID": ref,
        "Invoice": invoice,
        "Date": paid_on.isoformat(),
        "Amount": amount,
        "Status": "AUTHORISED",
    }


@pytest.fixture
def payloads():
    """Builders for ledger platform JSON payloads"""

    class Payloads:
        contact = staticmethod(contact_payload)
        invoice = staticmethod(invoice_payload)
        payment = staticmethod(payment_payload)

    return Payloads


@pytest.fixture
def make_entry():
    """Factory for mirrored entry read models"""

    def build(
        total: str,
        due_date: date,
        paid: str = "0",
        issue_date: Optional[date] = None,
        status: str = "awaiting_payment",
        contact_id: Optional[uuid.UUID] = None,
        contact_name: str = "Acme Retail",
        entry_type: str = RECEIVABLE,
        risk_level: str = "low",
        credited: str = "0",
    ) -> EntryView:
        total_d, paid_d = Decimal(total), Decimal(paid)
        return EntryView(
            id=uuid.uuid4(),
            contact_id=contact_id or uuid.uuid4(),
            contact_name=contact_name,
            number=f"{'BILL' if entry_type == PAYABLE else 'INV'}-{uuid.uuid4().hex[:6]}",
            issue_date=issue_date or due_date - timedelta(days=30),
            due_date=due_date,
            total=total_d,
            amount_paid=paid_d,
            amount_outstanding=total_d - paid_d - Decimal(credited),
            status=status,
            entry_type=entry_type,
            risk_level=risk_level,
        )

    return build
