"""Shared helpers for webhook-service tests."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from webhook_service.domain.webhooks import InboundWebhook, OutboundWebhook
from webhook_service.repositories import InMemoryWebhookStore


@dataclass
class ReceivedRequest:
    method: str
    headers: dict[str, str]
    raw: bytes

    @property
    def json(self) -> Any:
        return json.loads(self.raw.decode("utf-8"))


@dataclass
class Target:
    """A fake integration endpoint recording every request it gets."""

    status: int = 200
    body: str = "ok"
    delay: float = 0.0
    requests: list[ReceivedRequest] = field(default_factory=list)

    async def handler(self, request: web.Request) -> web.Response:
        raw = await request.read()
        self.requests.append(ReceivedRequest(request.method, dict(request.headers), raw))
        if self.delay:
            await asyncio.sleep(self.delay)
        return web.Response(status=self.status, text=self.body)


async def start_target(aiohttp_server, target: Target | None = None) -> tuple[Target, str]:
    target = target or Target()
    app = web.Application()
    app.router.add_route("*", "/hook", target.handler)
    server = await aiohttp_server(app)
    return target, str(server.make_url("/hook"))


UNREACHABLE_URL = "http://127.0.0.1:1/hook"


async def make_outbound(store: InMemoryWebhookStore, url: str, **overrides: Any) -> OutboundWebhook:
    values: dict[str, Any] = {
        "name": "CRM sync",
        "url": url,
        "events": ["deal_won"],
        "retry_enabled": True,
        "max_retries": 3,
    }
    values.update(overrides)
    return await store.create_outbound(values)


async def make_inbound(store: InMemoryWebhookStore, **overrides: Any) -> InboundWebhook:
    values: dict[str, Any] = {
        "name": "Landing page",
        "pipeline_id": "pipe-1",
        "secret_token": "tok-123",
        "field_mappings": [{"source": "name", "target": "contact_name"}],
    }
    values.update(overrides)
    return await store.create_inbound(values)
