"""PostgreSQL implementation of :class:`WebhookStore`."""
from __future__ import annotations

from datetime import datetime
from typing import Any, List
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]

from webhook_service.core.exceptions import ConflictError, NotFoundError
from webhook_service.domain.enums import DeliveryState
from webhook_service.domain.webhooks import (
    DeliveryLogEntry,
    InboundWebhook,
    IngestionLogEntry,
    OutboundWebhook,
    ScheduledRetry,
)
from webhook_service.repositories.base import BaseRepository

_OUTBOUND_COLUMNS = (
    "name",
    "url",
    "method",
    "headers",
    "events",
    "secret_key",
    "ip_allowlist",
    "is_active",
    "retry_enabled",
    "max_retries",
)
_INBOUND_COLUMNS = (
    "name",
    "pipeline_id",
    "phase_id",
    "secret_token",
    "field_mappings",
    "default_tags",
    "default_temperature",
    "hmac_secret",
    "ip_allowlist",
    "is_active",
)
_JSONB = {"headers", "field_mappings"}


class PostgresWebhookStore(BaseRepository):
    json_columns = ("headers", "field_mappings", "payload", "mapped_data")

    def __init__(self, pool: asyncpg.Pool):
        super().__init__(pool)

    def _column_values(self, values: dict[str, Any], allowed: tuple[str, ...]) -> dict[str, Any]:
        columns: dict[str, Any] = {}
        for column in allowed:
            if column not in values:
                continue
            value = values[column]
            columns[column] = self._dumps(value) if column in _JSONB else value
        return columns

    @staticmethod
    def _placeholder(column: str, idx: int) -> str:
        return f"${idx}::jsonb" if column in _JSONB else f"${idx}"

    async def _insert(self, table: str, columns: dict[str, Any]) -> asyncpg.Record:
        names = list(columns)
        placeholders = ", ".join(self._placeholder(name, i) for i, name in enumerate(names, start=1))
        query = f"""
            INSERT INTO {table} ({", ".join(names)})
            VALUES ({placeholders})
            RETURNING *
        """
        try:
            record = await self._fetchrow(query, *columns.values())
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("Secret token already in use") from exc
        assert record is not None
        return record

    async def _update(self, table: str, row_id: UUID, columns: dict[str, Any]) -> asyncpg.Record | None:
        assignments = [
            f"{name} = {self._placeholder(name, i)}" for i, name in enumerate(columns, start=2)
        ]
        assignments.append("updated_at = now()")
        query = f"""
            UPDATE {table}
            SET {", ".join(assignments)}
            WHERE id = $1
            RETURNING *
        """
        try:
            return await self._fetchrow(query, row_id, *columns.values())
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("Secret token already in use") from exc

    # -- outbound -----------------------------------------------------------

    async def create_outbound(self, values: dict[str, Any]) -> OutboundWebhook:
        record = await self._insert("outbound_webhooks", self._column_values(values, _OUTBOUND_COLUMNS))
        return OutboundWebhook.model_validate(self._normalize(record))

    async def get_outbound(self, webhook_id: UUID) -> OutboundWebhook:
        record = await self._fetchrow("SELECT * FROM outbound_webhooks WHERE id = $1", webhook_id)
        if record is None:
            raise NotFoundError("Webhook not found")
        return OutboundWebhook.model_validate(self._normalize(record))

    async def list_outbound(self) -> List[OutboundWebhook]:
        records = await self._fetch("SELECT * FROM outbound_webhooks ORDER BY created_at DESC")
        return [OutboundWebhook.model_validate(self._normalize(r)) for r in records]

    async def update_outbound(self, webhook_id: UUID, values: dict[str, Any]) -> OutboundWebhook:
        columns = self._column_values(values, _OUTBOUND_COLUMNS)
        if not columns:
            return await self.get_outbound(webhook_id)
        record = await self._update("outbound_webhooks", webhook_id, columns)
        if record is None:
            raise NotFoundError("Webhook not found")
        return OutboundWebhook.model_validate(self._normalize(record))

    async def delete_outbound(self, webhook_id: UUID) -> None:
        record = await self._fetchrow(
            "DELETE FROM outbound_webhooks WHERE id = $1 RETURNING id", webhook_id
        )
        if record is None:
            raise NotFoundError("Webhook not found")

    async def list_active_subscribed(self, event: str) -> List[OutboundWebhook]:
        records = await self._fetch(
            """
            SELECT *
            FROM outbound_webhooks
            WHERE is_active = true
              AND $1 = ANY(events)
            ORDER BY created_at ASC
            """,
            event,
        )
        return [OutboundWebhook.model_validate(self._normalize(r)) for r in records]

    async def record_delivery_success(self, webhook_id: UUID, at: datetime) -> None:
        await self._execute(
            """
            UPDATE outbound_webhooks
            SET consecutive_failures = 0,
                last_error = NULL,
                last_success_at = $2,
                last_triggered_at = $2,
                updated_at = now()
            WHERE id = $1
            """,
            webhook_id,
            at,
        )

    async def record_delivery_failure(self, webhook_id: UUID, error: str | None, at: datetime) -> int:
        failures = await self._fetchval(
            """
            UPDATE outbound_webhooks
            SET consecutive_failures = consecutive_failures + 1,
                last_error = $2,
                last_triggered_at = $3,
                updated_at = now()
            WHERE id = $1
            RETURNING consecutive_failures
            """,
            webhook_id,
            error,
            at,
        )
        return int(failures or 0)

    # -- inbound ------------------------------------------------------------

    async def create_inbound(self, values: dict[str, Any]) -> InboundWebhook:
        record = await self._insert("inbound_webhooks", self._column_values(values, _INBOUND_COLUMNS))
        return InboundWebhook.model_validate(self._normalize(record))

    async def get_inbound(self, webhook_id: UUID) -> InboundWebhook:
        record = await self._fetchrow("SELECT * FROM inbound_webhooks WHERE id = $1", webhook_id)
        if record is None:
            raise NotFoundError("Inbound webhook not found")
        return InboundWebhook.model_validate(self._normalize(record))

    async def list_inbound(self) -> List[InboundWebhook]:
        records = await self._fetch("SELECT * FROM inbound_webhooks ORDER BY created_at DESC")
        return [InboundWebhook.model_validate(self._normalize(r)) for r in records]

    async def update_inbound(self, webhook_id: UUID, values: dict[str, Any]) -> InboundWebhook:
        columns = self._column_values(values, _INBOUND_COLUMNS)
        if not columns:
            return await self.get_inbound(webhook_id)
        record = await self._update("inbound_webhooks", webhook_id, columns)
        if record is None:
            raise NotFoundError("Inbound webhook not found")
        return InboundWebhook.model_validate(self._normalize(record))

    async def delete_inbound(self, webhook_id: UUID) -> None:
        record = await self._fetchrow(
            "DELETE FROM inbound_webhooks WHERE id = $1 RETURNING id", webhook_id
        )
        if record is None:
            raise NotFoundError("Inbound webhook not found")

    async def find_active_inbound(self, pipeline_id: str, secret_token: str) -> InboundWebhook | None:
        record = await self._fetchrow(
            """
            SELECT *
            FROM inbound_webhooks
            WHERE pipeline_id = $1
              AND secret_token = $2
              AND is_active = true
            """,
            pipeline_id,
            secret_token,
        )
        if record is None:
            return None
        return InboundWebhook.model_validate(self._normalize(record))

    async def record_inbound_request(self, webhook_id: UUID, at: datetime) -> None:
        await self._execute(
            """
            UPDATE inbound_webhooks
            SET requests_today = CASE
                    WHEN last_request_at IS NULL
                      OR date_trunc('day', last_request_at, 'UTC') < date_trunc('day', $2::timestamptz, 'UTC')
                    THEN 1
                    ELSE requests_today + 1
                END,
                last_request_at = $2,
                updated_at = now()
            WHERE id = $1
            """,
            webhook_id,
            at,
        )

    async def reset_requests_today(self, day_start: datetime) -> int:
        status = await self._execute(
            """
            UPDATE inbound_webhooks
            SET requests_today = 0
            WHERE requests_today > 0
              AND (last_request_at IS NULL OR last_request_at < $1)
            """,
            day_start,
        )
        return self._affected(status)

    # -- logs ---------------------------------------------------------------

    async def append_delivery_log(self, entry: DeliveryLogEntry) -> DeliveryLogEntry:
        await self._execute(
            """
            INSERT INTO webhook_delivery_logs (
                id,
                webhook_id,
                event_type,
                payload,
                response_status,
                response_body,
                response_time_ms,
                attempt,
                status,
                error_message,
                created_at
            )
            VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8, $9, $10, $11)
            """,
            entry.id,
            entry.webhook_id,
            entry.event_type,
            self._dumps(entry.payload),
            entry.response_status,
            entry.response_body,
            entry.response_time_ms,
            entry.attempt,
            entry.status.value,
            entry.error_message,
            entry.created_at,
        )
        return entry

    async def list_delivery_logs(
        self,
        *,
        webhook_id: UUID | None = None,
        since: datetime | None = None,
        limit: int | None = 100,
    ) -> List[DeliveryLogEntry]:
        where: list[str] = []
        values: list[Any] = []
        idx = 1
        if webhook_id is not None:
            where.append(f"webhook_id = ${idx}")
            values.append(webhook_id)
            idx += 1
        if since is not None:
            where.append(f"created_at >= ${idx}")
            values.append(since)
            idx += 1
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        limit_sql = ""
        if limit is not None:
            limit_sql = f"LIMIT ${idx}"
            values.append(limit)
        query = f"""
            SELECT *
            FROM webhook_delivery_logs
            {where_sql}
            ORDER BY created_at DESC
            {limit_sql}
        """
        records = await self._fetch(query, *values)
        return [DeliveryLogEntry.model_validate(self._normalize(r)) for r in records]

    async def append_ingestion_log(self, entry: IngestionLogEntry) -> IngestionLogEntry:
        await self._execute(
            """
            INSERT INTO inbound_webhook_logs (
                id,
                inbound_webhook_id,
                source_ip,
                payload,
                mapped_data,
                status,
                error_message,
                created_at
            )
            VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6, $7, $8)
            """,
            entry.id,
            entry.inbound_webhook_id,
            entry.source_ip,
            self._dumps(entry.payload),
            self._dumps(entry.mapped_data),
            entry.status.value,
            entry.error_message,
            entry.created_at,
        )
        return entry

    async def list_ingestion_logs(
        self, *, inbound_webhook_id: UUID | None = None, limit: int | None = 100
    ) -> List[IngestionLogEntry]:
        values: list[Any] = []
        where_sql = ""
        if inbound_webhook_id is not None:
            where_sql = "WHERE inbound_webhook_id = $1"
            values.append(inbound_webhook_id)
        limit_sql = ""
        if limit is not None:
            limit_sql = f"LIMIT ${len(values) + 1}"
            values.append(limit)
        records = await self._fetch(
            f"""
            SELECT *
            FROM inbound_webhook_logs
            {where_sql}
            ORDER BY created_at DESC
            {limit_sql}
            """,
            *values,
        )
        return [IngestionLogEntry.model_validate(self._normalize(r)) for r in records]

    # -- retries ------------------------------------------------------------

    async def schedule_retry(self, retry: ScheduledRetry) -> ScheduledRetry:
        await self._execute(
            """
            INSERT INTO webhook_delivery_retries (
                id,
                webhook_id,
                event_type,
                payload,
                attempt,
                state,
                next_attempt_at,
                last_error,
                created_at,
                updated_at
            )
            VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8, $9, $10)
            """,
            retry.id,
            retry.webhook_id,
            retry.event_type,
            self._dumps(retry.payload),
            retry.attempt,
            retry.state.value,
            retry.next_attempt_at,
            retry.last_error,
            retry.created_at,
            retry.updated_at,
        )
        return retry

    async def claim_due_retries(self, now: datetime, *, limit: int = 50) -> List[ScheduledRetry]:
        """Atomically move due retries to ``sent``.

        ``FOR UPDATE SKIP LOCKED`` keeps several workers from claiming the same row.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                records = await conn.fetch(
                    """
                    WITH cte AS (
                        SELECT id
                        FROM webhook_delivery_retries
                        WHERE state = 'scheduled_retry'
                          AND next_attempt_at <= $1
                        ORDER BY next_attempt_at ASC
                        FOR UPDATE SKIP LOCKED
                        LIMIT $2
                    )
                    UPDATE webhook_delivery_retries r
                    SET state = 'sent',
                        locked_at = $1,
                        updated_at = now()
                    FROM cte
                    WHERE r.id = cte.id
                    RETURNING r.*
                    """,
                    now,
                    limit,
                )
        return [ScheduledRetry.model_validate(self._normalize(r)) for r in records]

    async def mark_retry(
        self,
        retry_id: UUID,
        *,
        state: DeliveryState,
        last_error: str | None = None,
        attempt: int | None = None,
        next_attempt_at: datetime | None = None,
    ) -> None:
        status = await self._execute(
            """
            UPDATE webhook_delivery_retries
            SET state = $2,
                last_error = $3,
                attempt = COALESCE($4, attempt),
                next_attempt_at = COALESCE($5, next_attempt_at),
                locked_at = NULL,
                updated_at = now()
            WHERE id = $1
            """,
            retry_id,
            state.value,
            last_error,
            attempt,
            next_attempt_at,
        )
        if self._affected(status) == 0:
            raise NotFoundError("Scheduled retry not found")

    async def reclaim_stuck_retries(self, locked_before: datetime) -> int:
        status = await self._execute(
            """
            UPDATE webhook_delivery_retries
            SET state = 'scheduled_retry',
                locked_at = NULL,
                updated_at = now()
            WHERE state = 'sent'
              AND locked_at < $1
            """,
            locked_before,
        )
        return self._affected(status)
