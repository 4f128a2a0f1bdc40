"""Public inbound endpoint called by third-party integrations."""
from __future__ import annotations

import structlog
from aiohttp import web

from webhook_service.api.utils import json_error, read_raw_json
from webhook_service.core.exceptions import InboundRejectedError
from webhook_service.services.dependencies import get_receiver
from webhook_service.services.receiver import InboundRequest

logger = structlog.get_logger(__name__)

routes = web.RouteTableDef()


@routes.route("*", "/receive/{pipeline_id}/{secret_token}")
async def receive_webhook(request: web.Request):
    # Unparseable bodies are answered before anything is looked up or logged.
    try:
        raw_body, payload = await read_raw_json(request)
    except (ValueError, RecursionError):
        return json_error(400, "Invalid JSON payload")

    inbound = InboundRequest(
        pipeline_id=request.match_info["pipeline_id"],
        secret_token=request.match_info["secret_token"],
        raw_body=raw_body,
        payload=payload,
        headers=request.headers,
        remote=request.remote,
    )
    receiver = await get_receiver(request)
    try:
        result = await receiver.receive(inbound)
    except InboundRejectedError as exc:
        return json_error(exc.status_code, exc.public_message)
    except Exception:
        logger.exception("Inbound webhook processing failed", pipeline_id=inbound.pipeline_id)
        return json_error(500, "Internal server error")

    return web.json_response(
        {
            "success": True,
            "message": "Webhook received successfully",
            "deal": result.command.model_dump(mode="json"),
            "logId": str(result.log_id),
        }
    )
