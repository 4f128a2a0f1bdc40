from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from multidict import CIMultiDict

from webhook_service.core.exceptions import (
    ConflictError,
    EndpointNotFoundError,
    InvalidSignatureError,
)
from webhook_service.domain.enums import IngestionLogStatus
from webhook_service.services.rate_limit import FixedWindowRateLimiter
from webhook_service.services.receiver import (
    InboundReceiver,
    InboundRequest,
    ip_allowed,
    parse_value,
    resolve_source_ip,
)

from tests.utils import make_inbound


@pytest.mark.parametrize(
    "headers,remote,expected",
    [
        ({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}, "127.0.0.1", "203.0.113.7"),
        ({"x-forwarded-for": " 203.0.113.8 "}, None, "203.0.113.8"),
        ({"CF-Connecting-IP": "198.51.100.1"}, "127.0.0.1", "198.51.100.1"),
        ({"X-Real-IP": "198.51.100.2"}, None, "198.51.100.2"),
        ({}, "127.0.0.1", "127.0.0.1"),
        ({}, None, "unknown"),
    ],
)
def test_resolve_source_ip(headers, remote, expected):
    assert resolve_source_ip(CIMultiDict(headers), remote) == expected


@pytest.mark.parametrize(
    "ip,allowlist,expected",
    [
        ("203.0.113.7", ["203.0.113.7"], True),
        ("203.0.113.7", ["203.0.113.0/24"], True),
        ("203.0.113.7", ["198.51.100.0/24", "203.0.113.8"], False),
        ("2001:db8::1", ["2001:db8::/32"], True),
        ("2001:db8::1", ["203.0.113.0/24"], False),
        ("unknown", ["203.0.113.7"], False),
        ("unknown", ["*"], True),
        ("203.0.113.7", ["not-an-ip", "203.0.113.7"], True),
        # substring matches are not accepted
        ("203.0.113.70", ["203.0.113.7"], False),
    ],
)
def test_ip_allowed(ip, allowlist, expected):
    assert ip_allowed(ip, allowlist) is expected


@pytest.mark.parametrize(
    "text,expected",
    [
        ("1500", 1500.0),
        ("1500.50", 1500.5),
        ("  42abc", 42.0),
        ("-3.5e2", -350.0),
        (".5", 0.5),
        ("R$ 100", 0.0),
        ("", 0.0),
        (None, 0.0),
        ("1e999", 0.0),
        ("Infinity", 0.0),
    ],
)
def test_parse_value(text, expected):
    assert parse_value(text) == expected


def _request(raw: bytes = b'{"name":"Ana"}', **overrides) -> InboundRequest:
    values = {
        "pipeline_id": "pipe-1",
        "secret_token": "tok-123",
        "raw_body": raw,
        "payload": {"name": "Ana"},
        "headers": CIMultiDict(),
        "remote": "127.0.0.1",
    }
    values.update(overrides)
    return InboundRequest(**values)


@pytest.mark.asyncio
async def test_receiver_returns_command_and_log(store):
    webhook = await make_inbound(store)
    receiver = InboundReceiver(store, FixedWindowRateLimiter())

    result = await receiver.receive(_request())

    assert result.command.contact_name == "Ana"
    assert result.command.pipeline_id == webhook.pipeline_id
    (log,) = await store.list_ingestion_logs(inbound_webhook_id=webhook.id)
    assert log.id == result.log_id
    assert log.source_ip == "127.0.0.1"


@pytest.mark.asyncio
async def test_receiver_rejections_are_logged_before_raising(store):
    await make_inbound(store, hmac_secret="s3cret")
    receiver = InboundReceiver(store, FixedWindowRateLimiter())

    with pytest.raises(EndpointNotFoundError):
        await receiver.receive(_request(secret_token="nope"))
    with pytest.raises(InvalidSignatureError) as excinfo:
        await receiver.receive(_request(headers=CIMultiDict({"X-Webhook-Signature": "sha256=00"})))
    assert excinfo.value.status_code == 401

    logs = await store.list_ingestion_logs()
    assert [log.error_message for log in logs] == ["Invalid HMAC signature", "Webhook not found or inactive"]
    assert all(log.status == IngestionLogStatus.REJECTED for log in logs)


@pytest.mark.asyncio
async def test_store_rejects_duplicate_tokens(store):
    await make_inbound(store)
    with pytest.raises(ConflictError):
        await make_inbound(store, pipeline_id="pipe-2")


@pytest.mark.asyncio
async def test_requests_today_rolls_over_per_day(store):
    webhook = await make_inbound(store)
    day = datetime(2024, 5, 1, 22, 0, tzinfo=timezone.utc)
    await store.record_inbound_request(webhook.id, day)
    await store.record_inbound_request(webhook.id, day + timedelta(hours=1))
    assert (await store.get_inbound(webhook.id)).requests_today == 2
    await store.record_inbound_request(webhook.id, day + timedelta(hours=3))
    assert (await store.get_inbound(webhook.id)).requests_today == 1
