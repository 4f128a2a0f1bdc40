"""Outbound webhook management endpoints."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import (
    limit_param,
    optional_uuid_param,
    parse_uuid,
    read_json,
    require_admin,
)
from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import OutboundWebhookCreateDTO, OutboundWebhookUpdateDTO
from webhook_service.services.dependencies import get_config_service

routes = web.RouteTableDef()


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    require_admin(request)
    service = await get_config_service(request)
    items = await service.list_outbound()
    return web.json_response({"webhooks": [item.model_dump(mode="json") for item in items]})


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    require_admin(request)
    body = await read_json(request)
    try:
        dto = OutboundWebhookCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_config_service(request)
    webhook = await service.create_outbound(dto)
    return web.json_response(webhook.model_dump(mode="json"), status=201)


# Registered before /api/v1/webhooks/{webhook_id} so "stats" is not read as an id.
@routes.get("/api/v1/webhooks/stats")
async def webhook_stats(request: web.Request):
    require_admin(request)
    service = await get_config_service(request)
    return web.json_response(await service.stats())


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    require_admin(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_config_service(request)
    try:
        webhook = await service.get_outbound(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"))


@routes.patch("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    require_admin(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    body = await read_json(request)
    try:
        dto = OutboundWebhookUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_config_service(request)
    try:
        webhook = await service.update_outbound(webhook_id, dto)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"))


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    require_admin(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_config_service(request)
    try:
        await service.delete_outbound(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.Response(status=204)


@routes.get("/api/v1/webhook-logs")
async def list_delivery_logs(request: web.Request):
    require_admin(request)
    webhook_id = optional_uuid_param(request, "webhook_id")
    limit = limit_param(request)
    service = await get_config_service(request)
    logs = await service.list_delivery_logs(webhook_id=webhook_id, limit=limit)
    return web.json_response({"logs": [log.model_dump(mode="json") for log in logs]})
