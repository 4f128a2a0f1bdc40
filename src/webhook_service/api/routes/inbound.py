"""Inbound webhook management endpoints."""
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
from webhook_service.core.exceptions import ConflictError, NotFoundError
from webhook_service.domain.dto import InboundWebhookCreateDTO, InboundWebhookUpdateDTO
from webhook_service.services.dependencies import get_config_service

routes = web.RouteTableDef()


@routes.get("/api/v1/inbound-webhooks")
async def list_inbound_webhooks(request: web.Request):
    require_admin(request)
    service = await get_config_service(request)
    items = await service.list_inbound()
    return web.json_response({"inbound_webhooks": [item.model_dump(mode="json") for item in items]})


@routes.post("/api/v1/inbound-webhooks")
async def create_inbound_webhook(request: web.Request):
    require_admin(request)
    body = await read_json(request)
    try:
        dto = InboundWebhookCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_config_service(request)
    try:
        webhook = await service.create_inbound(dto)
    except ConflictError as exc:
        raise web.HTTPConflict(text=str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"), status=201)


@routes.get("/api/v1/inbound-webhooks/{webhook_id}")
async def get_inbound_webhook(request: web.Request):
    require_admin(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_config_service(request)
    try:
        webhook = await service.get_inbound(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"))


@routes.patch("/api/v1/inbound-webhooks/{webhook_id}")
async def update_inbound_webhook(request: web.Request):
    require_admin(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    body = await read_json(request)
    try:
        dto = InboundWebhookUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc

    service = await get_config_service(request)
    try:
        webhook = await service.update_inbound(webhook_id, dto)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"))


@routes.delete("/api/v1/inbound-webhooks/{webhook_id}")
async def delete_inbound_webhook(request: web.Request):
    require_admin(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_config_service(request)
    try:
        await service.delete_inbound(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.Response(status=204)


@routes.post("/api/v1/inbound-webhooks/{webhook_id}/rotate-token")
async def rotate_inbound_token(request: web.Request):
    require_admin(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_config_service(request)
    try:
        webhook = await service.rotate_token(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ConflictError as exc:
        raise web.HTTPConflict(text=str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"))


@routes.get("/api/v1/inbound-webhook-logs")
async def list_ingestion_logs(request: web.Request):
    require_admin(request)
    inbound_webhook_id = optional_uuid_param(request, "inbound_webhook_id")
    limit = limit_param(request)
    service = await get_config_service(request)
    logs = await service.list_ingestion_logs(inbound_webhook_id=inbound_webhook_id, limit=limit)
    return web.json_response({"logs": [log.model_dump(mode="json") for log in logs]})
