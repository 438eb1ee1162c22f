"""Test doubles shared across the unit tests.

- FakeClock / RecordingSleep: deterministic time for retry and poll loops
- json_response: httpx.Response builder
- RecordingTransport: httpx transport that answers from a handler and
  records every request it sees
- SigningKey / FakeIdentityProvider: RS256 keys served from OpenID + JWKS endpoints
"""

import json
from collections.abc import Callable

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm


class FakeClock:
    """Monotonic clock advanced only by RecordingSleep."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class RecordingSleep:
    """Async sleep that records durations and advances a FakeClock instantly."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.now += max(0.0, seconds)


def json_response(status_code: int = 200, payload=None, headers: dict | None = None) -> httpx.Response:
    """Build an httpx.Response with a JSON body (empty when payload is None)."""
    content = b"" if payload is None else json.dumps(payload).encode()
    all_headers = {"Content-Type": "application/json"} if content else {}
    all_headers.update(headers or {})
    return httpx.Response(status_code, content=content, headers=all_headers)


class RecordingTransport(httpx.AsyncBaseTransport):
    """Transport answering from a handler and recording every request."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []
        self.closed = False

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        return self.handler(request)

    async def aclose(self) -> None:
        self.closed = True

    def paths(self) -> list[str]:
        return [f"{r.method} {r.url.path}" for r in self.requests]


class SigningKey:
    """RSA key pair publishing itself as a JWK and signing RS256 tokens."""

    def __init__(self, kid: str) -> None:
        self.kid = kid
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    def jwk(self) -> dict:
        data = json.loads(RSAAlgorithm.to_jwk(self.private_key.public_key()))
        data.update({"kid": self.kid, "use": "sig", "alg": "RS256"})
        return data

    def sign(self, claims: dict) -> str:
        return jwt.encode(claims, self.private_key, algorithm="RS256", headers={"kid": self.kid})


class FakeIdentityProvider:
    """OpenID metadata + JWKS endpoints serving a mutable key list."""

    OPENID_URL = "https://login.example.test/common/v2.0/.well-known/openid-configuration"
    JWKS_URL = "https://login.example.test/common/discovery/v2.0/keys"

    def __init__(self, keys: list[SigningKey]) -> None:
        self.keys = list(keys)
        self.available = True
        self.transport = RecordingTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        if not self.available:
            return json_response(503, {"error": "unavailable"})
        if str(request.url) == self.OPENID_URL:
            return json_response(200, {"issuer": "https://login.example.test", "jwks_uri": self.JWKS_URL})
        if str(request.url) == self.JWKS_URL:
            return json_response(200, {"keys": [k.jwk() for k in self.keys]})
        return json_response(404, {})

    @property
    def jwks_fetches(self) -> int:
        return sum(1 for r in self.transport.requests if str(r.url) == self.JWKS_URL)
