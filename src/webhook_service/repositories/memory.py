"""In-process implementation of :class:`WebhookStore` for development and tests."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from webhook_service.core.exceptions import ConflictError, NotFoundError
from webhook_service.domain.enums import DeliveryState
from webhook_service.domain.webhooks import (
    DeliveryLogEntry,
    InboundWebhook,
    IngestionLogEntry,
    OutboundWebhook,
    ScheduledRetry,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryWebhookStore:
    """Dict-backed store.

    A single ``asyncio.Lock`` serializes mutations; no awaits happen while it is
    held, so counter updates are atomic per webhook.
    """

    def __init__(self) -> None:
        self._outbound: dict[UUID, OutboundWebhook] = {}
        self._inbound: dict[UUID, InboundWebhook] = {}
        self._delivery_logs: list[DeliveryLogEntry] = []
        self._ingestion_logs: list[IngestionLogEntry] = []
        self._retries: dict[UUID, ScheduledRetry] = {}
        self._lock = asyncio.Lock()

    # -- outbound -----------------------------------------------------------

    async def create_outbound(self, values: dict[str, Any]) -> OutboundWebhook:
        now = _now()
        webhook = OutboundWebhook.model_validate(
            {**values, "id": uuid4(), "created_at": now, "updated_at": now}
        )
        async with self._lock:
            self._outbound[webhook.id] = webhook
        return webhook

    async def get_outbound(self, webhook_id: UUID) -> OutboundWebhook:
        webhook = self._outbound.get(webhook_id)
        if webhook is None:
            raise NotFoundError("Webhook not found")
        return webhook

    async def list_outbound(self) -> list[OutboundWebhook]:
        return sorted(self._outbound.values(), key=lambda w: w.created_at, reverse=True)

    async def update_outbound(self, webhook_id: UUID, values: dict[str, Any]) -> OutboundWebhook:
        async with self._lock:
            current = self._outbound.get(webhook_id)
            if current is None:
                raise NotFoundError("Webhook not found")
            updated = OutboundWebhook.model_validate(
                {**current.model_dump(), **values, "updated_at": _now()}
            )
            self._outbound[webhook_id] = updated
        return updated

    async def delete_outbound(self, webhook_id: UUID) -> None:
        async with self._lock:
            if self._outbound.pop(webhook_id, None) is None:
                raise NotFoundError("Webhook not found")

    async def list_active_subscribed(self, event: str) -> list[OutboundWebhook]:
        matching = [w for w in self._outbound.values() if w.is_active and event in w.events]
        return sorted(matching, key=lambda w: w.created_at)

    async def record_delivery_success(self, webhook_id: UUID, at: datetime) -> None:
        async with self._lock:
            current = self._outbound.get(webhook_id)
            if current is None:
                return
            self._outbound[webhook_id] = current.model_copy(
                update={
                    "consecutive_failures": 0,
                    "last_error": None,
                    "last_success_at": at,
                    "last_triggered_at": at,
                    "updated_at": at,
                }
            )

    async def record_delivery_failure(self, webhook_id: UUID, error: str | None, at: datetime) -> int:
        async with self._lock:
            current = self._outbound.get(webhook_id)
            if current is None:
                return 0
            failures = current.consecutive_failures + 1
            self._outbound[webhook_id] = current.model_copy(
                update={
                    "consecutive_failures": failures,
                    "last_error": error,
                    "last_triggered_at": at,
                    "updated_at": at,
                }
            )
        return failures

    # -- inbound ------------------------------------------------------------

    async def create_inbound(self, values: dict[str, Any]) -> InboundWebhook:
        now = _now()
        webhook = InboundWebhook.model_validate(
            {**values, "id": uuid4(), "created_at": now, "updated_at": now}
        )
        async with self._lock:
            self._ensure_token_unique(webhook.secret_token, exclude=None)
            self._inbound[webhook.id] = webhook
        return webhook

    async def get_inbound(self, webhook_id: UUID) -> InboundWebhook:
        webhook = self._inbound.get(webhook_id)
        if webhook is None:
            raise NotFoundError("Inbound webhook not found")
        return webhook

    async def list_inbound(self) -> list[InboundWebhook]:
        return sorted(self._inbound.values(), key=lambda w: w.created_at, reverse=True)

    async def update_inbound(self, webhook_id: UUID, values: dict[str, Any]) -> InboundWebhook:
        async with self._lock:
            current = self._inbound.get(webhook_id)
            if current is None:
                raise NotFoundError("Inbound webhook not found")
            if "secret_token" in values:
                self._ensure_token_unique(values["secret_token"], exclude=webhook_id)
            updated = InboundWebhook.model_validate(
                {**current.model_dump(), **values, "updated_at": _now()}
            )
            self._inbound[webhook_id] = updated
        return updated

    async def delete_inbound(self, webhook_id: UUID) -> None:
        async with self._lock:
            if self._inbound.pop(webhook_id, None) is None:
                raise NotFoundError("Inbound webhook not found")

    async def find_active_inbound(self, pipeline_id: str, secret_token: str) -> InboundWebhook | None:
        for webhook in self._inbound.values():
            if (
                webhook.is_active
                and webhook.pipeline_id == pipeline_id
                and webhook.secret_token == secret_token
            ):
                return webhook
        return None

    async def record_inbound_request(self, webhook_id: UUID, at: datetime) -> None:
        async with self._lock:
            current = self._inbound.get(webhook_id)
            if current is None:
                return
            last = current.last_request_at
            same_day = last is not None and last.date() == at.date()
            self._inbound[webhook_id] = current.model_copy(
                update={
                    "requests_today": current.requests_today + 1 if same_day else 1,
                    "last_request_at": at,
                }
            )

    async def reset_requests_today(self, day_start: datetime) -> int:
        reset = 0
        async with self._lock:
            for webhook_id, webhook in self._inbound.items():
                if webhook.requests_today == 0:
                    continue
                if webhook.last_request_at is None or webhook.last_request_at < day_start:
                    self._inbound[webhook_id] = webhook.model_copy(update={"requests_today": 0})
                    reset += 1
        return reset

    def _ensure_token_unique(self, token: str, *, exclude: UUID | None) -> None:
        for other in self._inbound.values():
            if other.id != exclude and other.secret_token == token:
                raise ConflictError("Secret token already in use")

    # -- logs ---------------------------------------------------------------

    async def append_delivery_log(self, entry: DeliveryLogEntry) -> DeliveryLogEntry:
        async with self._lock:
            self._delivery_logs.append(entry)
        return entry

    async def list_delivery_logs(
        self,
        *,
        webhook_id: UUID | None = None,
        since: datetime | None = None,
        limit: int | None = 100,
    ) -> list[DeliveryLogEntry]:
        items = [
            e
            for e in reversed(self._delivery_logs)
            if (webhook_id is None or e.webhook_id == webhook_id)
            and (since is None or e.created_at >= since)
        ]
        return items if limit is None else items[:limit]

    async def append_ingestion_log(self, entry: IngestionLogEntry) -> IngestionLogEntry:
        async with self._lock:
            self._ingestion_logs.append(entry)
        return entry

    async def list_ingestion_logs(
        self, *, inbound_webhook_id: UUID | None = None, limit: int | None = 100
    ) -> list[IngestionLogEntry]:
        items = [
            e
            for e in reversed(self._ingestion_logs)
            if inbound_webhook_id is None or e.inbound_webhook_id == inbound_webhook_id
        ]
        return items if limit is None else items[:limit]

    # -- retries ------------------------------------------------------------

    async def schedule_retry(self, retry: ScheduledRetry) -> ScheduledRetry:
        async with self._lock:
            self._retries[retry.id] = retry
        return retry

    async def claim_due_retries(self, now: datetime, *, limit: int = 50) -> list[ScheduledRetry]:
        async with self._lock:
            due = sorted(
                (
                    r
                    for r in self._retries.values()
                    if r.state is DeliveryState.SCHEDULED_RETRY and r.next_attempt_at <= now
                ),
                key=lambda r: r.next_attempt_at,
            )[:limit]
            claimed = []
            for retry in due:
                updated = retry.model_copy(
                    update={"state": DeliveryState.SENT, "locked_at": now, "updated_at": now}
                )
                self._retries[retry.id] = updated
                claimed.append(updated)
        return claimed

    async def mark_retry(
        self,
        retry_id: UUID,
        *,
        state: DeliveryState,
        last_error: str | None = None,
        attempt: int | None = None,
        next_attempt_at: datetime | None = None,
    ) -> None:
        async with self._lock:
            current = self._retries.get(retry_id)
            if current is None:
                raise NotFoundError("Scheduled retry not found")
            update: dict[str, Any] = {
                "state": state,
                "last_error": last_error,
                "locked_at": None,
                "updated_at": _now(),
            }
            if attempt is not None:
                update["attempt"] = attempt
            if next_attempt_at is not None:
                update["next_attempt_at"] = next_attempt_at
            self._retries[retry_id] = current.model_copy(update=update)

    async def reclaim_stuck_retries(self, locked_before: datetime) -> int:
        reclaimed = 0
        async with self._lock:
            for retry_id, retry in self._retries.items():
                if (
                    retry.state is DeliveryState.SENT
                    and retry.locked_at is not None
                    and retry.locked_at < locked_before
                ):
                    self._retries[retry_id] = retry.model_copy(
                        update={"state": DeliveryState.SCHEDULED_RETRY, "locked_at": None, "updated_at": _now()}
                    )
                    reclaimed += 1
        return reclaimed

    async def list_retries(self, webhook_id: UUID | None = None) -> list[ScheduledRetry]:
        return [r for r in self._retries.values() if webhook_id is None or r.webhook_id == webhook_id]
