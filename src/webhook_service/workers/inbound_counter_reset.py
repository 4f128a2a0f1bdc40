"""Worker: zero ``requests_today`` once a new UTC day starts."""
from __future__ import annotations

from datetime import datetime, timezone

from aiohttp import web

from webhook_service.services.dependencies import get_store


async def inbound_counter_reset(app: web.Application, now: datetime) -> str | None:
    day_start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    reset = await get_store(app).reset_requests_today(day_start)
    return f"reset={reset}" if reset else None
