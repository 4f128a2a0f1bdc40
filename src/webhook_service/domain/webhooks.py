"""Webhook domain primitives."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from webhook_service.domain.enums import (
    DeliveryLogStatus,
    DeliveryState,
    FieldTransform,
    HttpMethod,
    IngestionLogStatus,
    MappingTarget,
    Temperature,
)


class FieldMapping(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    source: str = Field(min_length=1)
    target: MappingTarget
    transform: FieldTransform | None = None


class OutboundWebhook(BaseModel):
    id: UUID
    name: str
    url: str
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = Field(default_factory=dict)
    events: list[str] = Field(min_length=1)
    secret_key: str | None = None
    ip_allowlist: list[str] | None = None
    is_active: bool = True
    retry_enabled: bool = True
    max_retries: int = Field(default=3, ge=0, le=10)
    consecutive_failures: int = Field(default=0, ge=0)
    last_triggered_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_degraded(self) -> bool:
        return self.consecutive_failures > self.max_retries


class InboundWebhook(BaseModel):
    id: UUID
    name: str
    pipeline_id: str
    phase_id: str | None = None
    secret_token: str
    field_mappings: list[FieldMapping] = Field(default_factory=list)
    default_tags: list[str] = Field(default_factory=list)
    default_temperature: Temperature = Temperature.WARM
    hmac_secret: str | None = None
    ip_allowlist: list[str] | None = None
    is_active: bool = True
    requests_today: int = 0
    last_request_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class DeliveryLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    webhook_id: UUID
    event_type: str
    payload: dict[str, Any]
    response_status: int | None = None
    response_body: str | None = None
    response_time_ms: int | None = None
    attempt: int = 1
    status: DeliveryLogStatus
    error_message: str | None = None
    created_at: datetime


class IngestionLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    inbound_webhook_id: UUID | None = None
    source_ip: str | None = None
    payload: Any = None
    mapped_data: dict[str, Any] | None = None
    status: IngestionLogStatus
    error_message: str | None = None
    created_at: datetime


class ScheduledRetry(BaseModel):
    id: UUID
    webhook_id: UUID
    event_type: str
    payload: dict[str, Any]
    attempt: int = Field(ge=2)
    state: DeliveryState = DeliveryState.SCHEDULED_RETRY
    next_attempt_at: datetime
    locked_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime


class DealCommand(BaseModel):
    """Normalized deal-creation command handed back to the CRM."""

    contact_name: str
    email: str = ""
    phone: str = ""
    value: float = 0.0
    company: str = ""
    tags: list[str] = Field(default_factory=list)
    temperature: Temperature
    source: str = "Webhook"
    notes: str = ""
    pipeline_id: str
    phase_id: str | None = None
    raw_payload: Any = None
