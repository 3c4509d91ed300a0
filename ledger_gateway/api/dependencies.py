"""Dependency injection for FastAPI endpoints"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_gateway.infrastructure.clients.ledger import LedgerAPIClient
from ledger_gateway.infrastructure.clients.oauth import TokenClient
from ledger_gateway.infrastructure.clients.paging import TenantGateRegistry, default_gates
from ledger_gateway.infrastructure.database.session import get_db
from ledger_gateway.services.connections import ClientFactory, ConnectionResolver


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, set by the authenticating proxy in front of the service"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


def get_token_client() -> TokenClient:
    """Provide OAuth token endpoint client instance"""
    return TokenClient()


def get_ledger_client_factory() -> ClientFactory:
    """Provide factory building a ledger API client per tenant"""
    return LedgerAPIClient


def get_gates() -> TenantGateRegistry:
    """Provide the process-wide per-tenant concurrency gates"""
    return default_gates


def get_connection_resolver(
    db: AsyncSession = Depends(get_db),
    token_client: TokenClient = Depends(get_token_client),
    client_factory: ClientFactory = Depends(get_ledger_client_factory),
) -> ConnectionResolver:
    return ConnectionResolver(db, token_client=token_client, client_factory=client_factory)
