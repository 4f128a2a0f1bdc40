"""Worker: re-send scheduled webhook deliveries that are due."""
from __future__ import annotations

from datetime import datetime

import structlog
from aiohttp import web

from webhook_service.services.dependencies import build_dispatcher, get_store
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)


async def retry_due_deliveries(app: web.Application, now: datetime) -> str | None:
    """Claim due retries and redeliver them one by one.

    A retry whose redelivery raises stays in ``sent`` until ``retry_reclaim_stuck``
    returns it to the schedule.
    """
    store = get_store(app)
    due = await store.claim_due_retries(now, limit=settings.retry_batch_size)
    if not due:
        return None

    dispatcher = build_dispatcher(app)
    succeeded = failed = errors = 0
    for retry in due:
        try:
            outcome = await dispatcher.redeliver(retry)
        except Exception:
            errors += 1
            logger.exception("Scheduled retry failed to run", retry_id=str(retry.id))
            continue
        if outcome is not None and outcome.success:
            succeeded += 1
        else:
            failed += 1
    return f"claimed={len(due)} succeeded={succeeded} failed={failed} errors={errors}"
