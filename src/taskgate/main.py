"""FastAPI application factories — one per service.

Learn: App factory pattern — create_identity_app() and create_task_app()
each return a configured FastAPI instance. Everything process-wide is
built here and hung off app.state instead of living in module globals:

    app.state.settings          Settings used to build the app
    app.state.engine            AsyncEngine (own pool per app)
    app.state.session_factory   per-request AsyncSession factory
    app.state.codec             TokenCodec (identity service only)
    app.state.identity_client   remote verifier (task service only)

Tests build their own apps with their own Settings and, for the task
service, an identity client wired to an in-process identity app.

Lifespan creates the service's table at startup. If the database is
unreachable at that point the process fails to start.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskgate import __version__
from taskgate.api import identity_router, task_router
from taskgate.api.health import router as health_router
from taskgate.auth.tokens import TokenCodec
from taskgate.clients.identity_client import IdentityClient, build_identity_client
from taskgate.config import Settings, settings as default_settings
from taskgate.db.engine import build_engine, build_session_factory, create_tables
from taskgate.db.models import IDENTITY_TABLES, TASK_TABLES
from taskgate.errors import register_exception_handlers
from taskgate.logging_setup import configure_logging
from taskgate.middleware.error_boundary import ErrorBoundaryMiddleware
from taskgate.middleware.request_id import RequestIdMiddleware
from taskgate.middleware.security import SecurityHeadersMiddleware

logger = structlog.get_logger()


def _make_lifespan(tables):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle.

        Learn: Anything before `yield` runs at startup, after `yield` runs
        at shutdown.
        """
        cfg: Settings = app.state.settings
        configure_logging(cfg.log_level, cfg.log_json)
        logger.info(
            "taskgate.starting",
            service=app.state.service_name,
            version=__version__,
            environment=cfg.environment,
        )
        if app.state.service_name == "identity" and cfg.uses_default_secret:
            logger.warning("taskgate.default_jwt_secret", hint="set TASKGATE_JWT_SECRET")

        await create_tables(app.state.engine, tables)
        logger.info("taskgate.database_ready", service=app.state.service_name)

        yield

        logger.info("taskgate.shutdown", service=app.state.service_name)
        client = getattr(app.state, "identity_client", None)
        if client is not None:
            await client.aclose()
        await app.state.engine.dispose()

    return lifespan


def _build_app(service_name: str, title: str, cfg: Settings, tables) -> FastAPI:
    app = FastAPI(
        title=title,
        version=__version__,
        lifespan=_make_lifespan(tables),
    )

    app.state.service_name = service_name
    app.state.settings = cfg
    app.state.engine = build_engine(cfg.database_url, echo=cfg.debug)
    app.state.session_factory = build_session_factory(app.state.engine)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RequestId → Security → ErrorBoundary → handler
    app.add_middleware(ErrorBoundaryMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    register_exception_handlers(app)
    app.include_router(health_router, tags=["health"])
    return app


def create_identity_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the identity service: register, login, verify."""
    cfg = settings or default_settings
    app = _build_app("identity", "Taskgate Identity Service", cfg, IDENTITY_TABLES)

    ttl = timedelta(minutes=cfg.token_ttl_minutes) if cfg.token_ttl_minutes > 0 else None
    app.state.codec = TokenCodec(cfg.jwt_secret, algorithm=cfg.jwt_algorithm, ttl=ttl)

    app.include_router(identity_router)
    return app


def create_task_app(
    settings: Optional[Settings] = None,
    identity_client: Optional[IdentityClient] = None,
) -> FastAPI:
    """Build the task service: token-gated task CRUD."""
    cfg = settings or default_settings
    app = _build_app("tasks", "Taskgate Task Service", cfg, TASK_TABLES)

    app.state.identity_client = identity_client or build_identity_client(
        cfg.identity_service_url,
        timeout=cfg.verify_timeout_seconds,
        cache_seconds=cfg.verify_cache_seconds,
    )

    app.include_router(task_router)
    return app


# Default app instances (used by uvicorn: taskgate.main:identity_app / task_app)
identity_app = create_identity_app()
task_app = create_task_app()
