"""Trigger and connectivity-test endpoints called by the CRM."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import read_json, require_admin
from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import TriggerDTO, WebhookTestDTO
from webhook_service.services.dependencies import get_dispatcher

routes = web.RouteTableDef()


@routes.post("/api/v1/webhooks/trigger")
async def trigger_event(request: web.Request):
    require_admin(request)
    body = await read_json(request)
    if not body.get("event") or body.get("deal") is None:
        raise web.HTTPBadRequest(text="Missing event or deal data")
    try:
        dto = TriggerDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    dispatcher = await get_dispatcher(request)
    summary = await dispatcher.dispatch(dto.event, dto.deal)
    return web.json_response(summary)


@routes.post("/api/v1/webhooks/test")
async def test_webhook(request: web.Request):
    require_admin(request)
    body = await read_json(request)
    try:
        dto = WebhookTestDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    dispatcher = await get_dispatcher(request)
    try:
        result = await dispatcher.test(dto.webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(result)
