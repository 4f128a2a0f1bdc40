"""Outbound webhook dispatcher.

Fans a CRM event out to every active subscribed webhook, records one delivery log
per attempt, keeps the per-webhook health counters current and persists retry
intents. Re-delivery of scheduled retries is driven by the ``retry_due_deliveries``
worker through :meth:`OutboundDispatcher.redeliver`.
"""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import KNOWN_EVENTS, DeliveryLogStatus, DeliveryState
from webhook_service.domain.webhooks import DeliveryLogEntry, OutboundWebhook, ScheduledRetry
from webhook_service.otel import get_tracer
from webhook_service.repositories.store import WebhookStore
from webhook_service.services.retry import backoff_seconds, validate_delivery_path
from webhook_service.services.signature import SIGNATURE_HEADER, signature_header

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

TEST_EVENT = "test"
TEST_RESPONSE_BODY_MAX_CHARS = 1000

# Sample deal sent by the connectivity check.
TEST_DEAL: dict[str, Any] = {
    "id": "test-123",
    "title": "Negócio de Teste",
    "value": 10000,
    "contact_name": "João Silva",
    "contact_email": "joao@exemplo.com",
    "contact_phone": "+5511999999999",
    "company": "Empresa Teste",
    "temperature": "hot",
    "tags": ["teste", "webhook"],
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_transport_payload(event: str, deal: dict[str, Any], *, at: datetime | None = None) -> dict[str, Any]:
    return {"event": event, "timestamp": _isoformat(at or _now()), "deal": deal}


def serialize_payload(payload: dict[str, Any]) -> bytes:
    """Compact UTF-8 JSON; these exact bytes are both signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


@dataclass(frozen=True)
class DeliveryOutcome:
    success: bool
    status: int | None
    body: str | None
    error: str | None
    time_ms: int


class OutboundDispatcher:
    def __init__(
        self,
        store: WebhookStore,
        session: ClientSession,
        *,
        timeout_s: float = 10.0,
        max_concurrency: int = 10,
        body_limit: int = 5000,
        retry_base_seconds: float = 30.0,
        retry_max_backoff_seconds: float = 3600.0,
    ) -> None:
        self._store = store
        self._session = session
        self._timeout_s = timeout_s
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._body_limit = body_limit
        self._retry_base = retry_base_seconds
        self._retry_cap = retry_max_backoff_seconds

    async def dispatch(self, event: str, deal: dict[str, Any]) -> dict[str, Any]:
        """Deliver ``event`` to every active subscriber; never raises for a single subscriber."""
        if event not in KNOWN_EVENTS:
            logger.info("Triggered event is not a known CRM event", webhook_event=event)
        webhooks = await self._store.list_active_subscribed(event)
        if not webhooks:
            logger.info("No webhooks subscribed", webhook_event=event)
            return {"message": "No webhooks configured for this event", "triggered": 0}

        payload = build_transport_payload(event, deal)
        body = serialize_payload(payload)
        outcomes = await asyncio.gather(
            *(self._deliver_first(webhook, event, payload, body) for webhook in webhooks),
            return_exceptions=True,
        )

        results = []
        for webhook, outcome in zip(webhooks, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Webhook delivery bookkeeping failed",
                    webhook_id=str(webhook.id),
                    webhook_event=event,
                    error=repr(outcome),
                )
                outcome = DeliveryOutcome(False, None, None, str(outcome), 0)
            results.append(
                {
                    "webhookId": str(webhook.id),
                    "webhookName": webhook.name,
                    "success": outcome.success,
                    "status": outcome.status,
                    "timeMs": outcome.time_ms,
                }
            )
        return {
            "message": f"Triggered {len(results)} webhook(s)",
            "triggered": len(results),
            "results": results,
        }

    async def test(self, webhook_id: UUID) -> dict[str, Any]:
        """Send the sample deal to one webhook; failure counters are left untouched."""
        webhook = await self._store.get_outbound(webhook_id)
        payload = build_transport_payload(TEST_EVENT, TEST_DEAL)
        outcome = await self._send(webhook, TEST_EVENT, serialize_payload(payload), attempt=1)
        await self._log(webhook, TEST_EVENT, payload, outcome, attempt=1)
        return {
            "success": outcome.success,
            "status": outcome.status,
            "responseBody": outcome.body[:TEST_RESPONSE_BODY_MAX_CHARS] if outcome.body is not None else None,
            "error": outcome.error,
            "timeMs": outcome.time_ms,
        }

    async def redeliver(self, retry: ScheduledRetry) -> DeliveryOutcome | None:
        """Execute one claimed retry and move it to its next state.

        Returns ``None`` when the webhook is gone, inactive or no longer retried.
        """
        try:
            webhook = await self._store.get_outbound(retry.webhook_id)
        except NotFoundError:
            webhook = None
        if webhook is None or not webhook.is_active or not webhook.retry_enabled:
            state = validate_delivery_path(retry.state, DeliveryState.FAILED, DeliveryState.EXHAUSTED)
            await self._store.mark_retry(retry.id, state=state, last_error="Webhook deleted or disabled")
            logger.info("Scheduled retry dropped", retry_id=str(retry.id), webhook_id=str(retry.webhook_id))
            return None

        outcome = await self._send(webhook, retry.event_type, serialize_payload(retry.payload), attempt=retry.attempt)
        await self._log(webhook, retry.event_type, retry.payload, outcome, attempt=retry.attempt)
        now = _now()

        if outcome.success:
            await self._store.record_delivery_success(webhook.id, now)
            state = validate_delivery_path(retry.state, DeliveryState.SUCCEEDED)
            await self._store.mark_retry(retry.id, state=state)
            return outcome

        await self._store.record_delivery_failure(webhook.id, outcome.error, now)
        if retry.attempt <= webhook.max_retries:
            next_attempt = retry.attempt + 1
            state = validate_delivery_path(retry.state, DeliveryState.FAILED, DeliveryState.SCHEDULED_RETRY)
            await self._log_retrying(webhook, retry.event_type, retry.payload, next_attempt)
            await self._store.mark_retry(
                retry.id,
                state=state,
                last_error=outcome.error,
                attempt=next_attempt,
                next_attempt_at=now + timedelta(seconds=self._backoff(next_attempt)),
            )
        else:
            state = validate_delivery_path(retry.state, DeliveryState.FAILED, DeliveryState.EXHAUSTED)
            await self._store.mark_retry(retry.id, state=state, last_error=outcome.error)
            logger.warning(
                "Webhook retries exhausted",
                webhook_id=str(webhook.id),
                webhook_event=retry.event_type,
                attempt=retry.attempt,
            )
        return outcome

    async def _deliver_first(
        self, webhook: OutboundWebhook, event: str, payload: dict[str, Any], body: bytes
    ) -> DeliveryOutcome:
        state = validate_delivery_path(DeliveryState.PENDING, DeliveryState.SENT)
        async with self._semaphore:
            outcome = await self._send(webhook, event, body, attempt=1)
        await self._log(webhook, event, payload, outcome, attempt=1)
        now = _now()
        if outcome.success:
            validate_delivery_path(state, DeliveryState.SUCCEEDED)
            await self._store.record_delivery_success(webhook.id, now)
            return outcome

        state = validate_delivery_path(state, DeliveryState.FAILED)
        failures = await self._store.record_delivery_failure(webhook.id, outcome.error, now)
        if webhook.retry_enabled and failures <= webhook.max_retries:
            state = validate_delivery_path(state, DeliveryState.SCHEDULED_RETRY)
            await self._log_retrying(webhook, event, payload, 2)
            await self._store.schedule_retry(
                ScheduledRetry(
                    id=uuid4(),
                    webhook_id=webhook.id,
                    event_type=event,
                    payload=payload,
                    attempt=2,
                    state=state,
                    next_attempt_at=now + timedelta(seconds=self._backoff(2)),
                    last_error=outcome.error,
                    created_at=now,
                    updated_at=now,
                )
            )
        return outcome

    async def _send(self, webhook: OutboundWebhook, event: str, body: bytes, *, attempt: int) -> DeliveryOutcome:
        headers = {"Content-Type": "application/json"}
        headers.update(
            {k: v for k, v in webhook.headers.items() if k.lower() != SIGNATURE_HEADER.lower()}
        )
        signature = signature_header(body, webhook.secret_key)
        if signature:
            headers[SIGNATURE_HEADER] = signature

        with tracer.start_as_current_span(
            "webhook.deliver",
            attributes={
                "webhook.id": str(webhook.id),
                "webhook.event": event,
                "webhook.attempt": attempt,
                "http.method": webhook.method.value,
            },
        ) as span:
            started = time.perf_counter()
            try:
                async with self._session.request(
                    webhook.method.value,
                    webhook.url,
                    data=body,
                    headers=headers,
                    timeout=ClientTimeout(total=self._timeout_s),
                ) as resp:
                    text = await resp.text(errors="replace")
                    ok = 200 <= resp.status < 300
                    outcome = DeliveryOutcome(
                        success=ok,
                        status=resp.status,
                        body=text[: self._body_limit],
                        error=None if ok else f"HTTP {resp.status}",
                        time_ms=_elapsed_ms(started),
                    )
            except asyncio.TimeoutError:
                outcome = DeliveryOutcome(False, None, None, f"Timeout after {self._timeout_s:g}s", _elapsed_ms(started))
            except (ClientError, ValueError) as exc:
                # aiohttp raises ValueError for requests it refuses to build, e.g. bad header values.
                outcome = DeliveryOutcome(False, None, None, str(exc) or type(exc).__name__, _elapsed_ms(started))
            span.set_attribute("webhook.success", outcome.success)
            if outcome.status is not None:
                span.set_attribute("http.status_code", outcome.status)

        log = logger.info if outcome.success else logger.warning
        log(
            "Webhook delivered" if outcome.success else "Webhook delivery failed",
            webhook_id=str(webhook.id),
            webhook_event=event,
            attempt=attempt,
            status=outcome.status,
            time_ms=outcome.time_ms,
            error=outcome.error,
        )
        return outcome

    async def _log(
        self,
        webhook: OutboundWebhook,
        event: str,
        payload: dict[str, Any],
        outcome: DeliveryOutcome,
        *,
        attempt: int,
    ) -> DeliveryLogEntry:
        return await self._store.append_delivery_log(
            DeliveryLogEntry(
                id=uuid4(),
                webhook_id=webhook.id,
                event_type=event,
                payload=payload,
                response_status=outcome.status,
                response_body=outcome.body,
                response_time_ms=outcome.time_ms,
                attempt=attempt,
                status=DeliveryLogStatus.SUCCESS if outcome.success else DeliveryLogStatus.FAILED,
                error_message=outcome.error,
                created_at=_now(),
            )
        )

    async def _log_retrying(
        self, webhook: OutboundWebhook, event: str, payload: dict[str, Any], attempt: int
    ) -> DeliveryLogEntry:
        return await self._store.append_delivery_log(
            DeliveryLogEntry(
                id=uuid4(),
                webhook_id=webhook.id,
                event_type=event,
                payload=payload,
                attempt=attempt,
                status=DeliveryLogStatus.RETRYING,
                error_message=f"Retry scheduled (attempt {attempt}/{webhook.max_retries + 1})",
                created_at=_now(),
            )
        )

    def _backoff(self, attempt: int) -> float:
        return backoff_seconds(attempt, base=self._retry_base, cap=self._retry_cap)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
