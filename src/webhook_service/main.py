"""aiohttp application entrypoint."""
from __future__ import annotations

from pathlib import Path

import structlog
from aiohttp import ClientSession, ClientTimeout, hdrs, web
from aiohttp_cors import CorsConfig, ResourceOptions, setup as cors_setup

from webhook_service.api.router import setup_routes
from webhook_service.db.migrations import create_migration_runner
from webhook_service.db.pool import close_pool, get_pool, init_pool
from webhook_service.logging_config import configure_logging
from webhook_service.middleware.trace import create_trace_middleware
from webhook_service.otel import setup_otel
from webhook_service.repositories import InMemoryWebhookStore, PostgresWebhookStore, WebhookStore
from webhook_service.services.dependencies import HTTP_SESSION_KEY, RATE_LIMITER_KEY, STORE_KEY
from webhook_service.services.rate_limit import (
    FixedWindowRateLimiter,
    PostgresRateLimiter,
    RateLimiter,
)
from webhook_service.settings import settings
from webhook_service.workers import WORKERS

# Configure structured logging
configure_logging(settings.log_level)

logger = structlog.get_logger(__name__)

MIGRATION_PATHS = [
    Path(__file__).resolve().parent.parent.parent / "migrations",  # repository checkout
    Path("/app/migrations"),  # container image
]

# Explicit lists instead of "*"; aiohttp_cors expects sequences, not comma-joined strings.
_ALLOWED_HEADERS = (
    "Accept",
    "Accept-Language",
    "Content-Language",
    "Content-Type",
    "Authorization",
    "X-Trace-Id",
    "X-Request-Id",
)
_ALLOWED_METHODS = ("GET", "HEAD", "POST", "PATCH", "DELETE", "OPTIONS")
_EXPOSED_HEADERS = ("X-Trace-Id", "X-Request-Id")


async def healthcheck(request: web.Request) -> web.Response:
    """Health check endpoint."""
    return web.json_response({"status": "ok", "service": settings.app_name, "env": settings.env})


async def open_http_session(app: web.Application) -> None:
    timeout = ClientTimeout(total=settings.webhook_request_timeout_seconds)
    app[HTTP_SESSION_KEY] = ClientSession(timeout=timeout)


async def close_http_session(app: web.Application) -> None:
    session = app.get(HTTP_SESSION_KEY)
    if session is not None:
        await session.close()


async def init_postgres_backends(app: web.Application) -> None:
    """Build the PostgreSQL store and rate limiter once the pool is up."""
    pool = await get_pool()
    if STORE_KEY not in app:
        app[STORE_KEY] = PostgresWebhookStore(pool)
    if RATE_LIMITER_KEY not in app:
        app[RATE_LIMITER_KEY] = PostgresRateLimiter(
            pool,
            limit=settings.inbound_rate_limit,
            window_seconds=settings.inbound_rate_window_seconds,
        )


def _setup_cors(app: web.Application) -> CorsConfig:
    return cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=_EXPOSED_HEADERS,
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=_ALLOWED_METHODS,
            )
            for origin in settings.cors_allowed_origins
        },
    )


def create_app(
    *,
    store: WebhookStore | None = None,
    rate_limiter: RateLimiter | None = None,
    start_workers: bool | None = None,
) -> web.Application:
    """Create aiohttp application.

    ``store`` and ``rate_limiter`` override the configured backends (tests pass an
    :class:`InMemoryWebhookStore`). ``start_workers`` defaults to
    ``settings.workers_enabled``.
    """
    app = web.Application()

    # Add trace middleware first (before other middleware)
    app.middlewares.append(create_trace_middleware(settings.app_name))

    cors = _setup_cors(app)

    if store is not None:
        app[STORE_KEY] = store
    if rate_limiter is not None:
        app[RATE_LIMITER_KEY] = rate_limiter

    uses_postgres = store is None and settings.store_backend == "postgres"
    if store is None and not uses_postgres:
        app[STORE_KEY] = InMemoryWebhookStore()
    if rate_limiter is None and settings.rate_limiter_backend == "memory":
        app[RATE_LIMITER_KEY] = FixedWindowRateLimiter(
            limit=settings.inbound_rate_limit,
            window_seconds=settings.inbound_rate_window_seconds,
        )

    app.router.add_get("/health", healthcheck)
    setup_routes(app)

    if uses_postgres or settings.rate_limiter_backend == "postgres":
        app.on_startup.append(init_pool)
        app.on_startup.append(
            create_migration_runner(str(settings.database_url), MIGRATION_PATHS)
        )
        app.on_startup.append(init_postgres_backends)
    app.on_startup.append(open_http_session)

    if settings.workers_enabled if start_workers is None else start_workers:
        for worker in WORKERS:
            app.on_startup.append(worker.start)
            app.on_cleanup.append(worker.stop)
    app.on_cleanup.append(close_http_session)
    if uses_postgres or settings.rate_limiter_backend == "postgres":
        app.on_cleanup.append(close_pool)

    setup_otel(app)

    # The inbound endpoint accepts any method and is called server-to-server only.
    for route in list(app.router.routes()):
        if route.method != hdrs.METH_ANY:
            cors.add(route)

    logger.info(
        "Application configured",
        store_backend="custom" if store is not None else settings.store_backend,
        rate_limiter_backend="custom" if rate_limiter is not None else settings.rate_limiter_backend,
    )
    return app


def main() -> None:
    """Run the application."""
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
