"""Authorization gateway tests — header parsing and fail-closed verification.

Learn: the gateway must tell three outcomes apart:
    valid token            → request proceeds with the verified identity
    invalid token (401)    → 401
    unknown (timeout, 5xx,
      garbage, refused)    → 401 as well — never let the request through

The failure cases swap the identity app for an httpx.MockTransport
handler via make_task_client(). To prove the handler never ran, each
case tries to CREATE a task and then checks the store is still empty.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import func, select

from conftest import bearer, register_user
from taskgate.clients.identity_client import (
    CachingIdentityClient,
    HttpIdentityClient,
    VerifiedIdentity,
)
from taskgate.db.models import Task
from taskgate.errors import UpstreamUnavailable

VALID_BODY = {
    "valid": True,
    "user": {
        "user_id": 7,
        "username": "grace",
        "issued_at": "2026-01-01T00:00:00+00:00",
        "expires_at": None,
    },
}


async def _task_count(app) -> int:
    async with app.state.session_factory() as session:
        result = await session.execute(select(func.count()).select_from(Task))
        return result.scalar_one()


# ═══════════════════════════════════════════════════════════
# Header extraction (real identity app)
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_missing_header(client):
    r = await client.get("/api/tasks")
    assert r.status_code == 401
    assert r.json() == {"error": "unauthorized", "detail": "Missing authorization header"}
    assert r.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["Token abc", "Bearer", "Bearer    ", "abc"])
async def test_malformed_header(client, value):
    r = await client.get("/api/tasks", headers={"Authorization": value})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid authorization header"


@pytest.mark.asyncio
async def test_invalid_token(client):
    r = await client.get("/api/tasks", headers=bearer("not.a.token"))
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid token"


@pytest.mark.asyncio
async def test_valid_token_passes(client, identity_client):
    token, _ = await register_user(identity_client, "erin")
    r = await client.get("/api/tasks", headers=bearer(token))
    assert r.status_code == 200
    assert r.json() == []


@pytest.mark.asyncio
async def test_bearer_scheme_is_case_insensitive(client, identity_client):
    token, _ = await register_user(identity_client, "frank")
    r = await client.get("/api/tasks", headers={"Authorization": f"bearer {token}"})
    assert r.status_code == 200


# ═══════════════════════════════════════════════════════════
# Fail closed on upstream trouble
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_upstream_valid_response_attaches_identity(make_task_client):
    client, app = await make_task_client(lambda request: httpx.Response(200, json=VALID_BODY))
    r = await client.post("/api/tasks", json={"title": "t"}, headers=bearer("anything"))
    assert r.status_code == 201
    assert r.json()["user_id"] == 7


@pytest.mark.asyncio
async def test_upstream_timeout_fails_closed(make_task_client):
    """A hung identity service is cut off by the timeout and the request is refused."""

    async def hang(request):
        await asyncio.sleep(30)
        return httpx.Response(200, json=VALID_BODY)

    client, app = await make_task_client(hang, timeout=0.2)
    r = await asyncio.wait_for(
        client.post("/api/tasks", json={"title": "t"}, headers=bearer("tok")),
        timeout=10,
    )
    assert r.status_code == 401
    assert r.json() == {"error": "unauthorized", "detail": "Token verification failed"}
    assert await _task_count(app) == 0


@pytest.mark.asyncio
async def test_upstream_transport_timeout_fails_closed(make_task_client):
    def raise_timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client, app = await make_task_client(raise_timeout)
    r = await client.post("/api/tasks", json={"title": "t"}, headers=bearer("tok"))
    assert r.status_code == 401
    assert await _task_count(app) == 0


@pytest.mark.asyncio
async def test_upstream_unreachable_fails_closed(make_task_client):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, app = await make_task_client(refuse)
    r = await client.post("/api/tasks", json={"title": "t"}, headers=bearer("tok"))
    assert r.status_code == 401
    # No upstream error text in the response
    assert "refused" not in r.text
    assert await _task_count(app) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [500, 502, 403, 404])
async def test_upstream_unexpected_status_fails_closed(make_task_client, status):
    client, app = await make_task_client(lambda request: httpx.Response(status, json=VALID_BODY))
    r = await client.post("/api/tasks", json={"title": "t"}, headers=bearer("tok"))
    assert r.status_code == 401
    assert await _task_count(app) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>oops</html>"),
        httpx.Response(200, json={"valid": True}),
        httpx.Response(200, json={"valid": True, "user": {"username": "x"}}),
        httpx.Response(200, json=["valid"]),
    ],
)
async def test_upstream_garbage_body_fails_closed(make_task_client, response):
    client, app = await make_task_client(lambda request: response)
    r = await client.post("/api/tasks", json={"title": "t"}, headers=bearer("tok"))
    assert r.status_code == 401
    assert await _task_count(app) == 0


@pytest.mark.asyncio
async def test_upstream_valid_false_is_rejected(make_task_client):
    client, app = await make_task_client(lambda request: httpx.Response(200, json={"valid": False}))
    r = await client.get("/api/tasks", headers=bearer("tok"))
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid token"


@pytest.mark.asyncio
async def test_verify_call_carries_token_and_request_id(make_task_client):
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["body"] = request.read()
        seen["request_id"] = request.headers.get("X-Request-ID")
        return httpx.Response(200, json=VALID_BODY)

    client, app = await make_task_client(handler)
    r = await client.get(
        "/api/tasks",
        headers={**bearer("the-token"), "X-Request-ID": "trace-123"},
    )
    assert r.status_code == 200
    assert seen["path"] == "/api/auth/verify"
    assert b'"token":"the-token"' in seen["body"].replace(b" ", b"")
    assert seen["request_id"] == "trace-123"


@pytest.mark.asyncio
async def test_each_request_verifies_independently(make_task_client):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=VALID_BODY)

    client, app = await make_task_client(handler)
    for _ in range(3):
        r = await client.get("/api/tasks", headers=bearer("tok"))
        assert r.status_code == 200
    assert len(calls) == 3


# ═══════════════════════════════════════════════════════════
# Client + cache units
# ═══════════════════════════════════════════════════════════


class _CountingClient:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    async def verify(self, token):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result

    async def aclose(self):
        pass


@pytest.mark.asyncio
async def test_http_client_returns_none_on_401():
    client = HttpIdentityClient(
        "http://identity",
        transport=httpx.MockTransport(lambda r: httpx.Response(401, json={"valid": False})),
    )
    assert await client.verify("tok") is None
    await client.aclose()


@pytest.mark.asyncio
async def test_http_client_raises_on_5xx():
    client = HttpIdentityClient(
        "http://identity",
        transport=httpx.MockTransport(lambda r: httpx.Response(503)),
    )
    with pytest.raises(UpstreamUnavailable):
        await client.verify("tok")
    await client.aclose()


@pytest.mark.asyncio
async def test_cache_reuses_positive_result():
    inner = _CountingClient(VerifiedIdentity(user_id=1, username="a"))
    cache = CachingIdentityClient(inner, ttl_seconds=60)
    assert (await cache.verify("tok")).user_id == 1
    assert (await cache.verify("tok")).user_id == 1
    assert inner.calls == 1


@pytest.mark.asyncio
async def test_cache_never_outlives_token_expiry():
    already_expired = VerifiedIdentity(
        user_id=1,
        username="a",
        expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
    )
    inner = _CountingClient(already_expired)
    cache = CachingIdentityClient(inner, ttl_seconds=60)
    await cache.verify("tok")
    await cache.verify("tok")
    assert inner.calls == 2


@pytest.mark.asyncio
async def test_cache_skips_negative_and_failed_results():
    inner = _CountingClient(None)
    cache = CachingIdentityClient(inner, ttl_seconds=60)
    assert await cache.verify("tok") is None
    assert await cache.verify("tok") is None
    assert inner.calls == 2

    failing = _CountingClient(UpstreamUnavailable("down"))
    cache = CachingIdentityClient(failing, ttl_seconds=60)
    for _ in range(2):
        with pytest.raises(UpstreamUnavailable):
            await cache.verify("tok")
    assert failing.calls == 2
