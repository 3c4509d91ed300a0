"""Resolve a user's ledger connection into an authenticated API client"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ledger_gateway.config import settings
from ledger_gateway.domain.exceptions import AuthExpiredError, ConnectionNotFoundError, TokenRefreshError
from ledger_gateway.infrastructure.clients.ledger import LedgerAPIClient
from ledger_gateway.infrastructure.clients.oauth import TokenClient, TokenSet
from ledger_gateway.infrastructure.database.models import LedgerConnection
from ledger_gateway.infrastructure.database.repositories import ConnectionRepository
from ledger_gateway.infrastructure.observability.metrics import token_refresh_counter
from ledger_gateway.utils.date_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], LedgerAPIClient]


@dataclass
class ConnectionHandle:
    """Authenticated client bound to one tenant"""

    client: LedgerAPIClient
    tenant_id: str
    connection_id: UUID


class ConnectionResolver:
    """Looks up the active connection and keeps its access token fresh"""

    def __init__(
        self,
        db: AsyncSession,
        token_client: Optional[TokenClient] = None,
        client_factory: Optional[ClientFactory] = None,
        refresh_margin: Optional[int] = None,
    ):
        self.db = db
        self.connections = ConnectionRepository(db)
        self.token_client = token_client or TokenClient()
        self.client_factory = client_factory or LedgerAPIClient
        margin = refresh_margin if refresh_margin is not None else settings.token_refresh_margin_seconds
        self.refresh_margin = timedelta(seconds=margin)

    async def resolve(self, user_id: str) -> ConnectionHandle:
        """
        Return a client for the user's active tenant.

        Raises:
            ConnectionNotFoundError: No active connection
            AuthExpiredError: Refresh token rejected; connection is deactivated
            TokenRefreshError: Refresh failed and the current token has expired
        """
        connection = await self.connections.get_active(user_id)
        if connection is None:
            raise ConnectionNotFoundError(f"No active ledger connection for user {user_id}")

        access_token = await self._fresh_access_token(connection)
        return ConnectionHandle(
            client=self.client_factory(access_token, connection.tenant_id),
            tenant_id=connection.tenant_id,
            connection_id=connection.id,
        )

    async def _fresh_access_token(self, connection: LedgerConnection) -> str:
        now = utcnow()
        expires_at = ensure_utc(connection.expires_at)
        if expires_at - now > self.refresh_margin:
            return connection.access_token

        extra = {"user_id": connection.user_id, "tenant_id": connection.tenant_id}
        try:
            tokens = await self.token_client.refresh(connection.refresh_token)
        except AuthExpiredError:
            token_refresh_counter.labels(result="expired").inc()
            logger.warning("Refresh token rejected, deactivating connection", extra=extra)
            await self.connections.deactivate(connection)
            raise
        except TokenRefreshError as e:
            token_refresh_counter.labels(result="failed").inc()
            if expires_at > now:
                logger.warning(f"Token refresh failed, using current token: {e}", extra=extra)
                return connection.access_token
            logger.error(f"Token refresh failed with expired token: {e}", extra=extra)
            raise

        token_refresh_counter.labels(result="success").inc()
        await self.connections.save_tokens(connection, tokens)
        logger.info("Access token refreshed", extra=extra)
        return tokens.access_token

    async def connect(
        self, user_id: str, tenant_id: str, tokens: TokenSet, tenant_name: Optional[str] = None
    ) -> LedgerConnection:
        """Store tokens obtained by the external OAuth flow"""
        return await self.connections.connect(user_id, tenant_id, tokens, tenant_name=tenant_name)

    async def disconnect(self, user_id: str) -> None:
        """
        Deactivate the user's active connection.

        Raises:
            ConnectionNotFoundError: No active connection
        """
        connection = await self.connections.get_active(user_id)
        if connection is None:
            raise ConnectionNotFoundError(f"No active ledger connection for user {user_id}")
        await self.connections.deactivate(connection)
