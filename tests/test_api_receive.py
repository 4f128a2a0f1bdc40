from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from webhook_service.domain.enums import IngestionLogStatus
from webhook_service.main import create_app
from webhook_service.services.rate_limit import FixedWindowRateLimiter
from webhook_service.services.signature import sign

from tests.utils import make_inbound

RECEIVE_URL = "/receive/pipe-1/tok-123"


def _signed(body: bytes, secret: str, **headers: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Webhook-Signature": f"sha256={sign(body, secret)}",
        **headers,
    }


@pytest.mark.asyncio
async def test_receive_signed_payload_from_allowed_ip(service_client, store):
    webhook = await make_inbound(
        store,
        hmac_secret="s3cret",
        ip_allowlist=["203.0.113.0/24"],
        default_tags=["ads"],
        default_temperature="hot",
        phase_id="phase-9",
    )
    body = json.dumps({"name": "Ana Silva"}).encode("utf-8")

    resp = await service_client.post(
        RECEIVE_URL,
        data=body,
        headers=_signed(body, "s3cret", **{"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}),
    )
    assert resp.status == 200
    data = await resp.json()
    assert data["success"] is True
    assert data["message"] == "Webhook received successfully"
    deal = data["deal"]
    assert deal["contact_name"] == "Ana Silva"
    assert deal["source"] == "Webhook"
    assert deal["tags"] == ["ads"]
    assert deal["temperature"] == "hot"
    assert deal["pipeline_id"] == "pipe-1"
    assert deal["phase_id"] == "phase-9"
    assert deal["value"] == 0
    assert deal["raw_payload"] == {"name": "Ana Silva"}

    logs = await store.list_ingestion_logs()
    assert len(logs) == 1
    log = logs[0]
    assert str(log.id) == data["logId"]
    assert log.status == IngestionLogStatus.SUCCESS
    assert log.inbound_webhook_id == webhook.id
    assert log.source_ip == "203.0.113.7"
    assert log.payload == {"name": "Ana Silva"}
    assert log.mapped_data["contact_name"] == "Ana Silva"
    assert "raw_payload" not in log.mapped_data

    refreshed = await store.get_inbound(webhook.id)
    assert refreshed.requests_today == 1
    assert refreshed.last_request_at is not None


@pytest.mark.asyncio
async def test_receive_maps_nested_fields_and_value(service_client, store):
    await make_inbound(
        store,
        field_mappings=[
            {"source": "lead.name", "target": "name"},
            {"source": "lead.email", "target": "email", "transform": "lowercase"},
            {"source": "lead.phone", "target": "phone", "transform": "format_phone"},
            {"source": "lead.budget", "target": "value"},
            {"source": "lead.company", "target": "company", "transform": "trim"},
        ],
    )
    payload = {
        "lead": {
            "name": "Bruno",
            "email": "Bruno@Example.COM",
            "phone": "(11) 98765-4321",
            "budget": "1500.50 BRL",
            "company": "  ACME  ",
        }
    }
    resp = await service_client.put(RECEIVE_URL, json=payload)
    assert resp.status == 200
    deal = (await resp.json())["deal"]
    assert deal["contact_name"] == "Bruno"
    assert deal["email"] == "bruno@example.com"
    assert deal["phone"] == "+5511987654321"
    assert deal["value"] == 1500.5
    assert deal["company"] == "ACME"
    assert deal["temperature"] == "warm"


@pytest.mark.asyncio
async def test_receive_defaults_contact_name(service_client, store):
    await make_inbound(store)
    resp = await service_client.post(RECEIVE_URL, json={"other": 1})
    assert resp.status == 200
    assert (await resp.json())["deal"]["contact_name"] == "Novo Lead"


@pytest.mark.asyncio
async def test_receive_invalid_json_is_not_logged(service_client, store):
    await make_inbound(store)
    resp = await service_client.post(
        RECEIVE_URL, data=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status == 400
    assert await resp.json() == {"error": "Invalid JSON payload"}
    assert await store.list_ingestion_logs() == []


@pytest.mark.asyncio
async def test_receive_unknown_token_rejected(service_client, store):
    await make_inbound(store)
    resp = await service_client.post("/receive/pipe-1/wrong", json={"name": "x"})
    assert resp.status == 404
    assert await resp.json() == {"error": "Webhook not found or inactive"}

    logs = await store.list_ingestion_logs()
    assert len(logs) == 1
    assert logs[0].status == IngestionLogStatus.REJECTED
    assert logs[0].inbound_webhook_id is None
    assert logs[0].error_message == "Webhook not found or inactive"


@pytest.mark.asyncio
async def test_receive_disabled_webhook_rejected(service_client, store):
    await make_inbound(store, is_active=False)
    resp = await service_client.post(RECEIVE_URL, json={"name": "x"})
    assert resp.status == 404

    logs = await store.list_ingestion_logs()
    assert [log.status for log in logs] == [IngestionLogStatus.REJECTED]


@pytest.mark.asyncio
async def test_receive_wrong_pipeline_rejected(service_client, store):
    await make_inbound(store)
    resp = await service_client.post("/receive/pipe-2/tok-123", json={"name": "x"})
    assert resp.status == 404


@pytest.mark.asyncio
async def test_receive_rate_limited(aiohttp_client, store):
    app = create_app(
        store=store,
        rate_limiter=FixedWindowRateLimiter(limit=2, window_seconds=60),
        start_workers=False,
    )
    client = await aiohttp_client(app)
    webhook = await make_inbound(store)

    for _ in range(2):
        resp = await client.post(RECEIVE_URL, json={"name": "x"})
        assert resp.status == 200
    resp = await client.post(RECEIVE_URL, json={"name": "x"})
    assert resp.status == 429
    assert await resp.json() == {"error": "Rate limit exceeded"}

    rejected = [log for log in await store.list_ingestion_logs() if log.status == IngestionLogStatus.REJECTED]
    assert len(rejected) == 1
    assert rejected[0].inbound_webhook_id == webhook.id
    assert (await store.get_inbound(webhook.id)).requests_today == 2


@pytest.mark.asyncio
async def test_receive_ip_not_allowed(service_client, store):
    await make_inbound(store, ip_allowlist=["198.51.100.10"])
    resp = await service_client.post(
        RECEIVE_URL, json={"name": "x"}, headers={"X-Forwarded-For": "203.0.113.7"}
    )
    assert resp.status == 403
    assert await resp.json() == {"error": "IP not allowed"}
    log = (await store.list_ingestion_logs())[0]
    assert log.status == IngestionLogStatus.REJECTED
    assert log.source_ip == "203.0.113.7"
    assert "203.0.113.7" in log.error_message


@pytest.mark.asyncio
async def test_receive_wildcard_allowlist(service_client, store):
    await make_inbound(store, ip_allowlist=["*"])
    resp = await service_client.post(
        RECEIVE_URL, json={"name": "x"}, headers={"CF-Connecting-IP": "192.0.2.55"}
    )
    assert resp.status == 200


@pytest.mark.asyncio
async def test_receive_bad_signature(service_client, store):
    await make_inbound(store, hmac_secret="s3cret")
    body = json.dumps({"name": "Ana"}).encode("utf-8")

    resp = await service_client.post(RECEIVE_URL, data=body, headers=_signed(body, "other"))
    assert resp.status == 401
    assert await resp.json() == {"error": "Invalid signature"}

    resp = await service_client.post(
        RECEIVE_URL, data=body, headers={"Content-Type": "application/json"}
    )
    assert resp.status == 401

    logs = await store.list_ingestion_logs()
    assert len(logs) == 2
    assert all(log.status == IngestionLogStatus.REJECTED for log in logs)


@pytest.mark.asyncio
async def test_receive_signature_checked_on_raw_bytes(service_client, store):
    await make_inbound(store, hmac_secret="s3cret")
    # Whitespace and key order differ from any re-serialization of the parsed body.
    body = b'{ "name" : "Ana",\n  "a": 1 }'
    resp = await service_client.post(RECEIVE_URL, data=body, headers=_signed(body, "s3cret"))
    assert resp.status == 200


@pytest.mark.asyncio
async def test_receive_internal_error(service_client, store):
    await make_inbound(store)
    with patch.object(store, "record_inbound_request", AsyncMock(side_effect=RuntimeError("db down"))):
        resp = await service_client.post(RECEIVE_URL, json={"name": "x"})
    assert resp.status == 500
    assert await resp.json() == {"error": "Internal server error"}


@pytest.mark.asyncio
async def test_receive_path_is_not_gated_by_admin_token(service_client, store, monkeypatch):
    from webhook_service.settings import settings

    monkeypatch.setattr(settings, "admin_api_token", "admin")
    await make_inbound(store)
    resp = await service_client.post(RECEIVE_URL, json={"name": "x"})
    assert resp.status == 200


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [b'{"name": NaN}', b'{"value": Infinity}', b"[-Infinity]"],
)
async def test_receive_non_standard_json_constants_rejected(service_client, store, body):
    await make_inbound(store)
    resp = await service_client.post(RECEIVE_URL, data=body, headers={"Content-Type": "application/json"})
    assert resp.status == 400
    assert await resp.json() == {"error": "Invalid JSON payload"}
    assert await store.list_ingestion_logs() == []


@pytest.mark.asyncio
async def test_receive_deeply_nested_json_rejected(service_client, store):
    await make_inbound(store)
    body = b"[" * 100000 + b"]" * 100000
    resp = await service_client.post(RECEIVE_URL, data=body, headers={"Content-Type": "application/json"})
    assert resp.status == 400
    assert await resp.json() == {"error": "Invalid JSON payload"}
    assert await store.list_ingestion_logs() == []
