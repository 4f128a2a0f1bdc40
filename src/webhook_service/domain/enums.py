"""Domain enums for webhooks and their audit logs."""
from __future__ import annotations

from enum import Enum


class HttpMethod(str, Enum):
    POST = "POST"
    PUT = "PUT"


class Temperature(str, Enum):
    """Lead temperature assigned to deals created from inbound webhooks."""

    COLD = "cold"
    WARM = "warm"
    HOT = "hot"


class MappingTarget(str, Enum):
    """Normalized deal fields an inbound payload can be mapped onto."""

    CONTACT_NAME = "contact_name"
    NAME = "name"
    EMAIL = "email"
    PHONE = "phone"
    VALUE = "value"
    NOTES = "notes"
    COMPANY = "company"


class FieldTransform(str, Enum):
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    TRIM = "trim"
    FORMAT_PHONE = "format_phone"


class DeliveryLogStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"


class IngestionLogStatus(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"


class DeliveryState(str, Enum):
    """Lifecycle of a single delivery attempt chain."""

    PENDING = "pending"
    SENT = "sent"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SCHEDULED_RETRY = "scheduled_retry"
    EXHAUSTED = "exhausted"


# Events the CRM currently emits; the set is owned by the CRM, so unknown
# event names are accepted on subscriptions and triggers.
KNOWN_EVENTS = (
    "deal_created",
    "deal_won",
    "deal_lost",
    "deal_moved",
    "deal_updated",
    "deal_archived",
)
