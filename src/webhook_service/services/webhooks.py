"""Webhook configuration service (outbound subscriptions, inbound endpoints, logs)."""
from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any, List
from uuid import UUID

import structlog

from webhook_service.domain.dto import (
    InboundWebhookCreateDTO,
    InboundWebhookUpdateDTO,
    OutboundWebhookCreateDTO,
    OutboundWebhookUpdateDTO,
)
from webhook_service.domain.enums import DeliveryLogStatus
from webhook_service.domain.webhooks import (
    DeliveryLogEntry,
    InboundWebhook,
    IngestionLogEntry,
    OutboundWebhook,
)
from webhook_service.repositories.store import WebhookStore

logger = structlog.get_logger(__name__)

# Fields a PATCH may explicitly clear with null.
_OUTBOUND_NULLABLE = frozenset({"secret_key", "ip_allowlist"})
_INBOUND_NULLABLE = frozenset({"phase_id", "hmac_secret", "ip_allowlist"})


def generate_secret_token() -> str:
    return secrets.token_urlsafe(32)


def _patch_values(dto: Any, nullable: frozenset[str]) -> dict[str, Any]:
    values = dto.model_dump(mode="json", exclude_unset=True)
    return {k: v for k, v in values.items() if v is not None or k in nullable}


class WebhookConfigService:
    def __init__(self, store: WebhookStore):
        self._store = store

    # outbound

    async def create_outbound(self, dto: OutboundWebhookCreateDTO) -> OutboundWebhook:
        webhook = await self._store.create_outbound(dto.model_dump(mode="json"))
        logger.info("Outbound webhook created", webhook_id=str(webhook.id), events=webhook.events)
        return webhook

    async def get_outbound(self, webhook_id: UUID) -> OutboundWebhook:
        return await self._store.get_outbound(webhook_id)

    async def list_outbound(self) -> List[OutboundWebhook]:
        return await self._store.list_outbound()

    async def update_outbound(self, webhook_id: UUID, dto: OutboundWebhookUpdateDTO) -> OutboundWebhook:
        values = _patch_values(dto, _OUTBOUND_NULLABLE)
        if not values:
            return await self._store.get_outbound(webhook_id)
        return await self._store.update_outbound(webhook_id, values)

    async def delete_outbound(self, webhook_id: UUID) -> None:
        await self._store.delete_outbound(webhook_id)
        logger.info("Outbound webhook deleted", webhook_id=str(webhook_id))

    # inbound

    async def create_inbound(self, dto: InboundWebhookCreateDTO) -> InboundWebhook:
        values = dto.model_dump(mode="json")
        values["secret_token"] = generate_secret_token()
        webhook = await self._store.create_inbound(values)
        logger.info("Inbound webhook created", inbound_webhook_id=str(webhook.id), pipeline_id=webhook.pipeline_id)
        return webhook

    async def get_inbound(self, webhook_id: UUID) -> InboundWebhook:
        return await self._store.get_inbound(webhook_id)

    async def list_inbound(self) -> List[InboundWebhook]:
        return await self._store.list_inbound()

    async def update_inbound(self, webhook_id: UUID, dto: InboundWebhookUpdateDTO) -> InboundWebhook:
        values = _patch_values(dto, _INBOUND_NULLABLE)
        if not values:
            return await self._store.get_inbound(webhook_id)
        return await self._store.update_inbound(webhook_id, values)

    async def delete_inbound(self, webhook_id: UUID) -> None:
        await self._store.delete_inbound(webhook_id)
        logger.info("Inbound webhook deleted", inbound_webhook_id=str(webhook_id))

    async def rotate_token(self, webhook_id: UUID) -> InboundWebhook:
        webhook = await self._store.update_inbound(webhook_id, {"secret_token": generate_secret_token()})
        logger.info("Inbound webhook token rotated", inbound_webhook_id=str(webhook_id))
        return webhook

    # logs and stats

    async def list_delivery_logs(
        self, *, webhook_id: UUID | None = None, limit: int = 100
    ) -> List[DeliveryLogEntry]:
        return await self._store.list_delivery_logs(webhook_id=webhook_id, limit=limit)

    async def list_ingestion_logs(
        self, *, inbound_webhook_id: UUID | None = None, limit: int = 100
    ) -> List[IngestionLogEntry]:
        return await self._store.list_ingestion_logs(inbound_webhook_id=inbound_webhook_id, limit=limit)

    async def stats(self, now: datetime | None = None) -> dict[str, Any]:
        """Delivery totals since the start of the current UTC day."""
        now = now or datetime.now(timezone.utc)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        logs = await self._store.list_delivery_logs(since=day_start, limit=None)
        webhooks = await self._store.list_outbound()

        success = sum(1 for log in logs if log.status == DeliveryLogStatus.SUCCESS)
        failed = sum(1 for log in logs if log.status == DeliveryLogStatus.FAILED)
        avg_time = sum(log.response_time_ms or 0 for log in logs) / len(logs) if logs else 0
        return {
            "totalToday": len(logs),
            "successCount": success,
            "failedCount": failed,
            "avgResponseTime": round(avg_time),
            "activeWebhooks": sum(1 for w in webhooks if w.is_active),
            "webhooksWithErrors": sum(1 for w in webhooks if w.consecutive_failures > 0),
        }
