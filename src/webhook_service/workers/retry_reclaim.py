"""Worker: reclaim stuck webhook retries."""
from __future__ import annotations

from datetime import datetime, timedelta

from aiohttp import web

from webhook_service.services.dependencies import get_store
from webhook_service.settings import settings


async def retry_reclaim_stuck(app: web.Application, now: datetime) -> str | None:
    """Release retries stuck in ``sent`` longer than ``retry_stuck_minutes``."""
    cutoff = now - timedelta(minutes=settings.retry_stuck_minutes)
    reclaimed = await get_store(app).reclaim_stuck_retries(cutoff)
    return f"reclaimed={reclaimed}" if reclaimed else None
