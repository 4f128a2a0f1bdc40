"""Shared dependency providers for aiohttp handlers and background tasks."""
from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from aiohttp import ClientSession, web

from webhook_service.repositories.store import WebhookStore
from webhook_service.services.dispatcher import OutboundDispatcher
from webhook_service.services.rate_limit import RateLimiter
from webhook_service.services.receiver import InboundReceiver
from webhook_service.services.webhooks import WebhookConfigService
from webhook_service.settings import settings

TService = TypeVar("TService")

# Application-scoped objects, set up in main.create_app / on startup.
STORE_KEY = "webhook_store"
RATE_LIMITER_KEY = "webhook_rate_limiter"
HTTP_SESSION_KEY = "webhook_http_session"

_CONFIG_SERVICE_KEY = "webhook_config_service"
_RECEIVER_KEY = "inbound_receiver"
_DISPATCHER_KEY = "outbound_dispatcher"


def get_store(app: web.Application) -> WebhookStore:
    return app[STORE_KEY]


def build_dispatcher(app: web.Application) -> OutboundDispatcher:
    session: ClientSession = app[HTTP_SESSION_KEY]
    return OutboundDispatcher(
        get_store(app),
        session,
        timeout_s=settings.webhook_request_timeout_seconds,
        max_concurrency=settings.webhook_dispatch_max_concurrency,
        body_limit=settings.webhook_response_body_max_chars,
        retry_base_seconds=settings.webhook_retry_base_seconds,
        retry_max_backoff_seconds=settings.webhook_retry_max_backoff_seconds,
    )


async def _get_or_create_service(
    request: web.Request,
    cache_key: str,
    builder: Callable[[web.Request], Awaitable[TService]],
) -> TService:
    service = request.get(cache_key)
    if service is None:
        service = await builder(request)
        request[cache_key] = service
    return service


async def get_config_service(request: web.Request) -> WebhookConfigService:
    async def builder(req: web.Request) -> WebhookConfigService:
        return WebhookConfigService(get_store(req.app))

    return await _get_or_create_service(request, _CONFIG_SERVICE_KEY, builder)


async def get_receiver(request: web.Request) -> InboundReceiver:
    async def builder(req: web.Request) -> InboundReceiver:
        rate_limiter: RateLimiter = req.app[RATE_LIMITER_KEY]
        return InboundReceiver(get_store(req.app), rate_limiter)

    return await _get_or_create_service(request, _RECEIVER_KEY, builder)


async def get_dispatcher(request: web.Request) -> OutboundDispatcher:
    async def builder(req: web.Request) -> OutboundDispatcher:
        return build_dispatcher(req.app)

    return await _get_or_create_service(request, _DISPATCHER_KEY, builder)
