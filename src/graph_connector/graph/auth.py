"""OAuth2 client-credentials authentication for Microsoft Graph.

ClientCredentialsAuth is an httpx.Auth flow: it acquires an app-only token
from the Entra token endpoint, caches it until shortly before expiry and
attaches it as a Bearer header to every Graph request.
"""

import asyncio
import logging
import time
from typing import AsyncGenerator

import httpx

logger = logging.getLogger("graph_connector.graph.auth")

GRAPH_SCOPE = "https://graph.microsoft.com/.default"


class AuthenticationError(Exception):
    """Raised when an access token cannot be acquired."""


class ClientCredentialsAuth(httpx.Auth):
    """App-only token acquisition with in-memory caching.

    Attributes:
        token_url: Entra v2.0 token endpoint for the tenant
        client_id: Application (client) ID
        scope: Requested scope (Graph default scope)
    """

    # Refresh this many seconds before the token expires
    EXPIRY_SKEW = 300

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: str = GRAPH_SCOPE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self._client_secret = client_secret
        self.scope = scope
        self._transport = transport
        self._access_token: str | None = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self.get_token()
        request.headers["Authorization"] = f"Bearer {token}"
        yield request

    async def get_token(self) -> str:
        """Return a cached token, acquiring a new one when close to expiry."""
        async with self._lock:
            if self._access_token and time.monotonic() < self._expires_at:
                return self._access_token

            async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
                try:
                    response = await client.post(
                        self.token_url,
                        data={
                            "grant_type": "client_credentials",
                            "client_id": self.client_id,
                            "client_secret": self._client_secret,
                            "scope": self.scope,
                        },
                    )
                except httpx.HTTPError as e:
                    raise AuthenticationError(f"Token request failed: {e}") from e

            if response.status_code != 200:
                try:
                    body = response.json()
                except ValueError:
                    body = {}
                raise AuthenticationError(
                    f"Token request failed ({response.status_code}): "
                    f"{body.get('error_description') or body.get('error') or response.text}"
                )

            try:
                body = response.json()
                access_token = body["access_token"]
                expires_in = float(body.get("expires_in", 3600))
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                raise AuthenticationError(
                    f"Token response did not contain a usable access token: {e!r}"
                ) from e
            self._access_token = access_token
            self._expires_at = time.monotonic() + max(0.0, expires_in - self.EXPIRY_SKEW)
            logger.debug("Acquired Graph access token (expires in %.0fs)", expires_in)
            return self._access_token
