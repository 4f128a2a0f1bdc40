"""Pydantic DTOs for the management and trigger APIs."""
from __future__ import annotations

from typing import Annotated, Any
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from webhook_service.domain.enums import HttpMethod, Temperature
from webhook_service.domain.webhooks import FieldMapping


def _normalize_events(value: list[str]) -> list[str]:
    events = [e.strip() for e in value if e and e.strip()]
    events = list(dict.fromkeys(events))
    if not events:
        raise ValueError("events must be a non-empty list")
    return events


def _check_url(value: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError("url must be an http(s) URL")
    return value


def _check_headers(value: dict[str, str]) -> dict[str, str]:
    for name, header_value in value.items():
        if not name.strip():
            raise ValueError("header names must be non-empty")
        if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in name + header_value):
            raise ValueError(f"header {name!r} contains control characters")
    return value


def _normalize_allowlist(value: list[str]) -> list[str] | None:
    entries = [v.strip() for v in value if v and v.strip()]
    return entries or None


EventList = Annotated[list[str], AfterValidator(_normalize_events)]
HeaderMap = Annotated[dict[str, str], AfterValidator(_check_headers)]
TargetUrl = Annotated[str, AfterValidator(_check_url)]
IpAllowlist = Annotated[list[str], AfterValidator(_normalize_allowlist)]


class OutboundWebhookCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    url: TargetUrl
    method: HttpMethod = HttpMethod.POST
    headers: HeaderMap = Field(default_factory=dict)
    events: EventList
    secret_key: str | None = None
    ip_allowlist: IpAllowlist | None = None
    is_active: bool = True
    retry_enabled: bool = True
    max_retries: int = Field(default=3, ge=0, le=10)


class OutboundWebhookUpdateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    url: TargetUrl | None = None
    method: HttpMethod | None = None
    headers: HeaderMap | None = None
    events: EventList | None = None
    secret_key: str | None = None
    ip_allowlist: IpAllowlist | None = None
    is_active: bool | None = None
    retry_enabled: bool | None = None
    max_retries: int | None = Field(default=None, ge=0, le=10)


class InboundWebhookCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    pipeline_id: str = Field(min_length=1)
    phase_id: str | None = None
    field_mappings: list[FieldMapping] = Field(default_factory=list)
    default_tags: list[str] = Field(default_factory=list)
    default_temperature: Temperature = Temperature.WARM
    hmac_secret: str | None = None
    ip_allowlist: IpAllowlist | None = None
    is_active: bool = True


class InboundWebhookUpdateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    pipeline_id: str | None = Field(default=None, min_length=1)
    phase_id: str | None = None
    field_mappings: list[FieldMapping] | None = None
    default_tags: list[str] | None = None
    default_temperature: Temperature | None = None
    hmac_secret: str | None = None
    ip_allowlist: IpAllowlist | None = None
    is_active: bool | None = None


class TriggerDTO(BaseModel):
    event: str = Field(min_length=1)
    deal: dict[str, Any]


class WebhookTestDTO(BaseModel):
    webhook_id: UUID = Field(alias="webhookId")
