"""Test fixtures — isolated apps backed by throwaway SQLite databases.

Learn: Testing pattern for the two-service setup:

1. Each test gets fresh Settings pointing at SQLite files in tmp_path
   (one per service — they don't share a store).
2. The identity app is served in-process through httpx's ASGITransport.
3. The task app's identity client uses ANOTHER ASGITransport aimed at
   that same identity app, so every task request really performs the
   remote verify call over the HTTP protocol — no network needed.
4. Failure modes (timeouts, 500s, garbage bodies) use make_task_client()
   with an httpx.MockTransport in place of the identity app.

No lifespan runs under ASGITransport, so fixtures create the tables.
"""

from typing import Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from taskgate.clients.identity_client import HttpIdentityClient
from taskgate.config import Settings
from taskgate.db.engine import create_tables
from taskgate.db.models import IDENTITY_TABLES, TASK_TABLES
from taskgate.main import create_identity_app, create_task_app

TEST_SECRET = "test-signing-key-0123456789-abcdefghijklmnop"
IDENTITY_BASE = "http://identity"


@pytest.fixture()
def identity_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'identity.db'}",
        jwt_secret=TEST_SECRET,
        bcrypt_rounds=4,
        token_ttl_minutes=60,
    )


@pytest.fixture()
def task_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}",
        identity_service_url=IDENTITY_BASE,
        verify_timeout_seconds=2.0,
        max_description_length=200,
    )


@pytest_asyncio.fixture()
async def identity_app(identity_settings):
    app = create_identity_app(identity_settings)
    await create_tables(app.state.engine, IDENTITY_TABLES)
    yield app
    await app.state.engine.dispose()


@pytest_asyncio.fixture()
async def identity_client(identity_app):
    """HTTP client for the identity service."""
    transport = ASGITransport(app=identity_app)
    async with AsyncClient(transport=transport, base_url=IDENTITY_BASE) as ac:
        yield ac


@pytest_asyncio.fixture()
async def task_app(task_settings, identity_app):
    """Task app whose gateway verifies tokens against the in-process identity app."""
    verifier = HttpIdentityClient(
        IDENTITY_BASE,
        timeout=task_settings.verify_timeout_seconds,
        transport=ASGITransport(app=identity_app),
    )
    app = create_task_app(task_settings, identity_client=verifier)
    await create_tables(app.state.engine, TASK_TABLES)
    yield app
    await verifier.aclose()
    await app.state.engine.dispose()


@pytest_asyncio.fixture()
async def client(task_app):
    """HTTP client for the task service."""
    transport = ASGITransport(app=task_app)
    async with AsyncClient(transport=transport, base_url="http://tasks") as ac:
        yield ac


@pytest_asyncio.fixture()
async def make_task_client(task_settings):
    """Build a task-service client whose identity service is a scripted handler.

    Usage: client, app = await make_task_client(handler) where handler takes an
    httpx.Request and returns an httpx.Response (or raises).
    """
    opened = []

    async def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        timeout: float | None = None,
        **client_kwargs,
    ):
        verifier = HttpIdentityClient(
            IDENTITY_BASE,
            timeout=timeout or task_settings.verify_timeout_seconds,
            transport=httpx.MockTransport(handler),
        )
        app = create_task_app(task_settings, identity_client=verifier)
        await create_tables(app.state.engine, TASK_TABLES)
        ac = AsyncClient(
            transport=ASGITransport(app=app, **client_kwargs),
            base_url="http://tasks",
        )
        opened.append((ac, verifier, app))
        return ac, app

    yield _make

    for ac, verifier, app in opened:
        await ac.aclose()
        await verifier.aclose()
        await app.state.engine.dispose()


async def register_user(identity_client, username: str, password: str = "pw-secret-1"):
    """Register a user through the API and return (token, user)."""
    r = await identity_client.post(
        "/api/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": password},
    )
    assert r.status_code == 201, r.text
    body = r.json()
    return body["token"], body["user"]


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
