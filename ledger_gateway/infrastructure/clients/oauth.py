"""OAuth2 token endpoint client for refreshing ledger platform access tokens"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx

from ledger_gateway.config import settings
from ledger_gateway.domain.exceptions import AuthExpiredError, TokenRefreshError
from ledger_gateway.utils.date_utils import utcnow

DEFAULT_EXPIRES_IN = 1800  # Platform access tokens live 30 minutes


@dataclass
class TokenSet:
    access_token: str
    refresh_token: str
    expires_at: datetime


class TokenClient:
    """Client for the refresh_token grant of the platform's token endpoint"""

    def __init__(
        self,
        token_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token_url = token_url or settings.ledger_token_url
        self.client_id = client_id if client_id is not None else settings.ledger_client_id
        self.client_secret = client_secret if client_secret is not None else settings.ledger_client_secret
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def refresh(self, refresh_token: str) -> TokenSet:
        """
        Exchange a refresh token for a new token set.

        Raises:
            AuthExpiredError: Refresh token rejected (invalid_grant, 400, 401)
            TokenRefreshError: Timeout, network failure, 5xx or malformed response
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    self.token_url,
                    data={"grant_type": "refresh_token", "refresh_token": refresh_token},
                    auth=(self.client_id, self.client_secret),
                )
            except httpx.TimeoutException as e:
                raise TokenRefreshError(f"Token endpoint timeout after {self.timeout}s") from e
            except httpx.RequestError as e:
                raise TokenRefreshError(f"Token endpoint unreachable: {e}") from e

            if response.status_code in (400, 401):
                raise AuthExpiredError("Refresh token rejected; reconnect the ledger account")
            if response.is_error:
                raise TokenRefreshError(f"Token endpoint error: {response.status_code}")

            try:
                data = response.json()
                expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
                return TokenSet(
                    access_token=data["access_token"],
                    # Platforms may rotate or keep the refresh token
                    refresh_token=data.get("refresh_token") or refresh_token,
                    expires_at=utcnow() + timedelta(seconds=expires_in),
                )
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                raise TokenRefreshError(f"Invalid token response: {e}") from e
