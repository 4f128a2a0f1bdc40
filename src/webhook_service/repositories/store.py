"""Collaborator interface for webhook configuration, audit logs and retries."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from webhook_service.domain.enums import DeliveryState
from webhook_service.domain.webhooks import (
    DeliveryLogEntry,
    InboundWebhook,
    IngestionLogEntry,
    OutboundWebhook,
    ScheduledRetry,
)


class WebhookStore(Protocol):
    """Durable store used by the dispatcher, the receiver and the management API.

    Counter updates (``record_delivery_*``, ``record_inbound_request``) must be
    atomic per row so concurrent deliveries to the same webhook never lose updates.
    Log tables are append-only.
    """

    # outbound webhooks
    async def create_outbound(self, values: dict[str, Any]) -> OutboundWebhook: ...
    async def get_outbound(self, webhook_id: UUID) -> OutboundWebhook: ...
    async def list_outbound(self) -> list[OutboundWebhook]: ...
    async def update_outbound(self, webhook_id: UUID, values: dict[str, Any]) -> OutboundWebhook: ...
    async def delete_outbound(self, webhook_id: UUID) -> None: ...
    async def list_active_subscribed(self, event: str) -> list[OutboundWebhook]: ...
    async def record_delivery_success(self, webhook_id: UUID, at: datetime) -> None: ...
    async def record_delivery_failure(self, webhook_id: UUID, error: str | None, at: datetime) -> int: ...

    # inbound webhooks
    async def create_inbound(self, values: dict[str, Any]) -> InboundWebhook: ...
    async def get_inbound(self, webhook_id: UUID) -> InboundWebhook: ...
    async def list_inbound(self) -> list[InboundWebhook]: ...
    async def update_inbound(self, webhook_id: UUID, values: dict[str, Any]) -> InboundWebhook: ...
    async def delete_inbound(self, webhook_id: UUID) -> None: ...
    async def find_active_inbound(self, pipeline_id: str, secret_token: str) -> InboundWebhook | None: ...
    async def record_inbound_request(self, webhook_id: UUID, at: datetime) -> None: ...
    async def reset_requests_today(self, day_start: datetime) -> int: ...

    # audit logs
    async def append_delivery_log(self, entry: DeliveryLogEntry) -> DeliveryLogEntry: ...
    async def list_delivery_logs(
        self,
        *,
        webhook_id: UUID | None = None,
        since: datetime | None = None,
        limit: int | None = 100,
    ) -> list[DeliveryLogEntry]: ...
    async def append_ingestion_log(self, entry: IngestionLogEntry) -> IngestionLogEntry: ...
    async def list_ingestion_logs(
        self, *, inbound_webhook_id: UUID | None = None, limit: int | None = 100
    ) -> list[IngestionLogEntry]: ...

    # retries
    async def schedule_retry(self, retry: ScheduledRetry) -> ScheduledRetry: ...
    async def claim_due_retries(self, now: datetime, *, limit: int = 50) -> list[ScheduledRetry]: ...
    async def mark_retry(
        self,
        retry_id: UUID,
        *,
        state: DeliveryState,
        last_error: str | None = None,
        attempt: int | None = None,
        next_attempt_at: datetime | None = None,
    ) -> None: ...
    async def reclaim_stuck_retries(self, locked_before: datetime) -> int: ...
