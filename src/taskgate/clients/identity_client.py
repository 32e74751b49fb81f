"""Identity service client — remote token verification for the task service.

Learn: the task service can't check a token itself (it has no signing
key), so every request costs one POST to the identity service's
/api/auth/verify. That call is the trust boundary, and it can fail in
three distinct ways:

    200 {"valid": true, ...}   → VerifiedIdentity
    401 {"valid": false, ...}  → None (the token is bad)
    anything else              → UpstreamUnavailable (we don't know)

"We don't know" must never be read as "valid". The gateway turns
UpstreamUnavailable into a 401, i.e. it fails closed. The call is
always bounded by a timeout so a hung identity service can't pin
request handlers forever.

IdentityClient is the seam tests use: HttpIdentityClient takes an
optional httpx transport, so it can be pointed at the identity app
in-process (ASGITransport) or at a scripted MockTransport.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

import httpx
import structlog

from taskgate.errors import UpstreamUnavailable

logger = structlog.get_logger()

VERIFY_PATH = "/api/auth/verify"


@dataclass(frozen=True)
class VerifiedIdentity:
    """What the identity service vouched for."""

    user_id: int
    username: str
    expires_at: Optional[datetime] = None


class IdentityClient(Protocol):
    async def verify(self, token: str) -> Optional[VerifiedIdentity]:
        """Return the identity for a valid token, None for an invalid one.

        Raises UpstreamUnavailable when the answer is unknown.
        """
        ...

    async def aclose(self) -> None:
        ...


def _parse_identity(body: dict) -> VerifiedIdentity:
    user = body["user"]
    expires_at = user.get("expires_at")
    return VerifiedIdentity(
        user_id=int(user["user_id"]),
        username=str(user["username"]),
        expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
    )


class HttpIdentityClient:
    """Calls the identity service over HTTP with a bounded timeout."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def verify(self, token: str) -> Optional[VerifiedIdentity]:
        headers = {}
        request_id = structlog.contextvars.get_contextvars().get("request_id")
        if request_id:
            headers["X-Request-ID"] = request_id

        # httpx.Timeout bounds each network phase; wait_for bounds the whole call.
        try:
            response = await asyncio.wait_for(
                self._client.post(VERIFY_PATH, json={"token": token}, headers=headers),
                timeout=self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            logger.warning("identity_client.timeout", url=self.base_url, timeout=self.timeout)
            raise UpstreamUnavailable("Identity service timed out") from e
        except httpx.HTTPError as e:
            logger.warning("identity_client.unreachable", url=self.base_url, error=type(e).__name__)
            raise UpstreamUnavailable("Identity service unavailable") from e

        if response.status_code == 401:
            return None

        if response.status_code != 200:
            logger.warning("identity_client.bad_status", status=response.status_code)
            raise UpstreamUnavailable("Identity service returned an unexpected status")

        try:
            body = response.json()
            if body.get("valid") is not True:
                return None
            return _parse_identity(body)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("identity_client.bad_body", error=type(e).__name__)
            raise UpstreamUnavailable("Identity service returned a malformed response") from e

    async def aclose(self) -> None:
        await self._client.aclose()


@dataclass
class _CacheEntry:
    identity: VerifiedIdentity
    expires_at: float


class CachingIdentityClient:
    """Short-lived cache of positive verification results.

    Entries live for ttl_seconds, and never past the token's own expiry.
    Negative results and upstream failures are not cached.
    """

    def __init__(self, inner: IdentityClient, ttl_seconds: float, maxsize: int = 10_000):
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self._maxsize = maxsize
        self._store: dict[str, _CacheEntry] = {}

    def _get(self, token: str) -> Optional[VerifiedIdentity]:
        entry = self._store.get(token)
        if entry is None:
            return None
        if entry.expires_at <= time.time():
            self._store.pop(token, None)
            return None
        return entry.identity

    def _set(self, token: str, identity: VerifiedIdentity) -> None:
        expires_at = time.time() + self.ttl_seconds
        if identity.expires_at is not None:
            expires_at = min(expires_at, identity.expires_at.timestamp())
        if expires_at <= time.time():
            return
        if len(self._store) >= self._maxsize:
            now = time.time()
            for k in list(self._store):
                if self._store[k].expires_at <= now:
                    self._store.pop(k, None)
            if len(self._store) >= self._maxsize:
                self._store.pop(next(iter(self._store)), None)
        self._store[token] = _CacheEntry(identity=identity, expires_at=expires_at)

    async def verify(self, token: str) -> Optional[VerifiedIdentity]:
        cached = self._get(token)
        if cached is not None:
            return cached
        identity = await self.inner.verify(token)
        if identity is not None:
            self._set(token, identity)
        return identity

    async def aclose(self) -> None:
        await self.inner.aclose()


def build_identity_client(
    base_url: str,
    timeout: float,
    cache_seconds: float = 0.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> IdentityClient:
    client: IdentityClient = HttpIdentityClient(base_url, timeout=timeout, transport=transport)
    if cache_seconds > 0:
        client = CachingIdentityClient(client, ttl_seconds=cache_seconds)
    return client
