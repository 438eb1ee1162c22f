"""Validation of lifecycle notification tokens.

Every notification carries one or more JWTs issued by Entra ID for the
connector's app registration. A token is accepted when:

- its signature verifies (RS256) against a key published at the issuer's
  JWKS endpoint (located via the OpenID metadata document),
- its audience is the app's client ID,
- its issuer is the tenant's v2.0 or sts.windows.net issuer,
- it has not expired.

Signing keys are held by SigningKeyCache. With the "cached" policy keys are
kept for the process lifetime and refreshed when a token names an unknown
``kid`` or fails its signature check against a cached key. With "per_call"
every validation rediscovers the keys.
"""

import asyncio
import logging
from typing import Any

import httpx
import jwt
from jwt import PyJWK, PyJWKSet

from graph_connector.config import CACHE_POLICY_CACHED, CACHE_POLICY_PER_CALL
from graph_connector.lifecycle.signals import SignalDiscarded

logger = logging.getLogger("graph_connector.lifecycle.tokens")

ALGORITHMS = ["RS256"]


class SigningKeyError(Exception):
    """Signing keys could not be obtained."""


class SigningKeyCache:
    """Signing keys discovered from an OpenID metadata document.

    Refreshes replace the key set wholesale and are serialized by a lock.

    Attributes:
        openid_config_url: OpenID metadata document URL
    """

    def __init__(
        self,
        openid_config_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.openid_config_url = openid_config_url
        self._client = httpx.AsyncClient(transport=transport, timeout=timeout)
        self._keys: dict[str, PyJWK] | None = None
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_keys(self) -> dict[str, PyJWK]:
        """Download the current key set, keyed by ``kid``.

        Raises:
            SigningKeyError: Metadata or key set unavailable or unusable
        """
        try:
            metadata = await self._get_json(self.openid_config_url)
            jwks_uri = metadata.get("jwks_uri")
            if not jwks_uri:
                raise SigningKeyError("OpenID metadata has no jwks_uri")
            key_set = PyJWKSet.from_dict(await self._get_json(jwks_uri))
        except (httpx.HTTPError, ValueError, jwt.PyJWTError) as e:
            raise SigningKeyError(f"Failed to obtain signing keys: {e}") from e

        keys = {k.key_id: k for k in key_set.keys if k.key_id}
        logger.debug("Fetched %d signing keys", len(keys))
        return keys

    async def get_key(self, kid: str | None, force_refresh: bool = False) -> PyJWK | None:
        """Return the key for ``kid``, refreshing once when it is not cached.

        Tokens without a ``kid`` never trigger a refresh.
        """
        if not kid:
            return None
        keys = self._keys
        if keys is None or force_refresh or kid not in keys:
            keys = await self._refresh_unless_replaced(keys)
        return keys.get(kid)

    async def _refresh_unless_replaced(self, seen: dict[str, PyJWK] | None) -> dict[str, PyJWK]:
        # Callers that queued behind a refresh reuse its result
        async with self._lock:
            if self._keys is not None and self._keys is not seen:
                return self._keys
            self._keys = await self.fetch_keys()
            return self._keys

    async def _get_json(self, url: str) -> dict[str, Any]:
        response = await self._client.get(url)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object from {url}")
        return data


class TokenValidator:
    """Validate lifecycle tokens against the app registration.

    Args:
        client_id: Expected audience
        issuers: Accepted issuers
        key_cache: Process-wide key cache (used with the "cached" policy)
        policy: "cached" or "per_call"
    """

    def __init__(
        self,
        client_id: str,
        issuers: list[str],
        key_cache: SigningKeyCache,
        policy: str = CACHE_POLICY_CACHED,
    ) -> None:
        if policy not in (CACHE_POLICY_CACHED, CACHE_POLICY_PER_CALL):
            raise ValueError(f"Unknown signing key cache policy: {policy!r}")
        self.client_id = client_id
        self.issuers = issuers
        self.key_cache = key_cache
        self.policy = policy

    async def validate_all(self, tokens: list[str] | tuple[str, ...]) -> None:
        """Validate every token.

        Raises:
            SignalDiscarded: No tokens, keys unobtainable, or any token invalid
        """
        if not tokens:
            raise SignalDiscarded("No validation tokens supplied")

        try:
            if self.policy == CACHE_POLICY_PER_CALL:
                keys = await self.key_cache.fetch_keys()
                for token in tokens:
                    self._decode(token, keys.get(self._kid(token)))
            else:
                for token in tokens:
                    await self._validate_cached(token)
        except SigningKeyError as e:
            raise SignalDiscarded(str(e)) from e
        except jwt.InvalidSignatureError as e:
            raise SignalDiscarded("Token signature invalid") from e

    async def _validate_cached(self, token: str) -> None:
        kid = self._kid(token)
        key = await self.key_cache.get_key(kid)
        try:
            self._decode(token, key)
        except jwt.InvalidSignatureError:
            # Keys may have rotated under the same kid
            logger.info("Signature check failed against cached key; refreshing keys")
            self._decode(token, await self.key_cache.get_key(kid, force_refresh=True))

    @staticmethod
    def _kid(token: str) -> str | None:
        try:
            return jwt.get_unverified_header(token).get("kid")
        except jwt.PyJWTError as e:
            raise SignalDiscarded(f"Malformed token: {e}") from e

    def _decode(self, token: str, key: PyJWK | None) -> dict[str, Any]:
        if key is None:
            raise SignalDiscarded("Token signed with an unknown key")
        try:
            claims = jwt.decode(
                token,
                key.key,
                algorithms=ALGORITHMS,
                audience=self.client_id,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.InvalidSignatureError:
            raise
        except jwt.PyJWTError as e:
            raise SignalDiscarded(f"Token rejected: {type(e).__name__}") from e
        if claims.get("iss") not in self.issuers:
            raise SignalDiscarded("Token issued by an untrusted issuer")
        return claims
