"""API router composition for aiohttp."""
from __future__ import annotations

from aiohttp import web

from webhook_service.api.routes import inbound, outbound, receive, trigger

ROUTE_MODULES = [
    receive,
    trigger,
    outbound,
    inbound,
]


def setup_routes(app: web.Application) -> None:
    """Attach domain routes to the aiohttp application."""
    for module in ROUTE_MODULES:
        app.add_routes(module.routes)
