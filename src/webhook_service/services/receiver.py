"""Inbound webhook receiver: authenticate, map and normalize third-party payloads."""
from __future__ import annotations

import ipaddress
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, NoReturn
from uuid import UUID, uuid4

import structlog

from webhook_service.core.exceptions import (
    EndpointNotFoundError,
    InboundRejectedError,
    InvalidSignatureError,
    IpNotAllowedError,
    RateLimitExceededError,
)
from webhook_service.domain.enums import IngestionLogStatus
from webhook_service.domain.webhooks import DealCommand, InboundWebhook, IngestionLogEntry
from webhook_service.repositories.store import WebhookStore
from webhook_service.services.field_mapper import apply_mappings
from webhook_service.services.rate_limit import RateLimiter
from webhook_service.services.signature import SIGNATURE_HEADER, verify

logger = structlog.get_logger(__name__)

DEFAULT_CONTACT_NAME = "Novo Lead"
DEAL_SOURCE = "Webhook"
UNKNOWN_IP = "unknown"

_LEADING_NUMBER = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class InboundRequest:
    pipeline_id: str
    secret_token: str
    raw_body: bytes
    payload: Any
    headers: Mapping[str, str]
    remote: str | None = None


@dataclass(frozen=True)
class IngestionResult:
    command: DealCommand
    log_id: UUID


def resolve_source_ip(headers: Mapping[str, str], remote: str | None = None) -> str:
    forwarded = headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("CF-Connecting-IP", "X-Real-IP"):
        value = headers.get(header)
        if value and value.strip():
            return value.strip()
    return remote or UNKNOWN_IP


def ip_allowed(source_ip: str, allowlist: Iterable[str]) -> bool:
    """Match against exact addresses, CIDR networks or the ``*`` wildcard."""
    entries = list(allowlist)
    if "*" in entries:
        return True
    try:
        address = ipaddress.ip_address(source_ip)
    except ValueError:
        return False
    for entry in entries:
        try:
            if "/" in entry:
                if address in ipaddress.ip_network(entry, strict=False):
                    return True
            elif address == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("Ignoring malformed allowlist entry", entry=entry)
    return False


def parse_value(text: str | None) -> float:
    """Parse the leading number of ``text``; anything unparsable or non-finite is 0."""
    if not text:
        return 0.0
    match = _LEADING_NUMBER.match(text)
    if match is None:
        return 0.0
    try:
        value = float(match.group(0))
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def build_deal_command(webhook: InboundWebhook, mapped: Mapping[str, str], payload: Any) -> DealCommand:
    return DealCommand(
        contact_name=mapped.get("contact_name") or mapped.get("name") or DEFAULT_CONTACT_NAME,
        email=mapped.get("email", ""),
        phone=mapped.get("phone", ""),
        value=parse_value(mapped.get("value")),
        company=mapped.get("company", ""),
        tags=list(webhook.default_tags),
        temperature=webhook.default_temperature,
        source=DEAL_SOURCE,
        notes=mapped.get("notes", ""),
        pipeline_id=webhook.pipeline_id,
        phase_id=webhook.phase_id,
        raw_payload=payload,
    )


class InboundReceiver:
    def __init__(self, store: WebhookStore, rate_limiter: RateLimiter) -> None:
        self._store = store
        self._rate_limiter = rate_limiter

    async def receive(self, request: InboundRequest) -> IngestionResult:
        """Run the inbound checks in order and return the normalized deal command.

        Every rejection is written to the ingestion log before
        :class:`InboundRejectedError` is raised.
        """
        source_ip = resolve_source_ip(request.headers, request.remote)

        webhook = await self._store.find_active_inbound(request.pipeline_id, request.secret_token)
        if webhook is None:
            await self._reject(
                request, source_ip, EndpointNotFoundError("Webhook not found or inactive")
            )

        if not await self._rate_limiter.allow(str(webhook.id)):
            await self._reject(
                request, source_ip, RateLimitExceededError("Rate limit exceeded", webhook_id=webhook.id)
            )

        if webhook.ip_allowlist and not ip_allowed(source_ip, webhook.ip_allowlist):
            await self._reject(
                request,
                source_ip,
                IpNotAllowedError(f"IP not allowed: {source_ip}", webhook_id=webhook.id),
            )

        if webhook.hmac_secret and not verify(
            request.raw_body, request.headers.get(SIGNATURE_HEADER), webhook.hmac_secret
        ):
            await self._reject(
                request, source_ip, InvalidSignatureError("Invalid HMAC signature", webhook_id=webhook.id)
            )

        mapped = apply_mappings(request.payload, webhook.field_mappings)
        command = build_deal_command(webhook, mapped, request.payload)

        now = datetime.now(timezone.utc)
        entry = await self._store.append_ingestion_log(
            IngestionLogEntry(
                id=uuid4(),
                inbound_webhook_id=webhook.id,
                source_ip=source_ip,
                payload=request.payload,
                mapped_data=command.model_dump(mode="json", exclude={"raw_payload"}),
                status=IngestionLogStatus.SUCCESS,
                created_at=now,
            )
        )
        await self._store.record_inbound_request(webhook.id, now)
        logger.info(
            "Inbound webhook accepted",
            inbound_webhook_id=str(webhook.id),
            pipeline_id=webhook.pipeline_id,
            source_ip=source_ip,
            log_id=str(entry.id),
        )
        return IngestionResult(command=command, log_id=entry.id)

    async def _reject(self, request: InboundRequest, source_ip: str, error: InboundRejectedError) -> NoReturn:
        await self._store.append_ingestion_log(
            IngestionLogEntry(
                id=uuid4(),
                inbound_webhook_id=error.webhook_id,
                source_ip=source_ip,
                payload=request.payload,
                status=IngestionLogStatus.REJECTED,
                error_message=error.reason,
                created_at=datetime.now(timezone.utc),
            )
        )
        logger.warning(
            "Inbound webhook rejected",
            inbound_webhook_id=str(error.webhook_id) if error.webhook_id else None,
            source_ip=source_ip,
            reason=error.reason,
            status=error.status_code,
        )
        raise error
