"""Background workers for webhook-service.

Each worker is a standalone module exporting a single async task function
compatible with :class:`webhook_service.worker.WorkerTask`.

Two workers are assembled here: ``retry_worker`` polls for due retries every
``retry_poll_interval_seconds`` and ``maintenance_worker`` runs the slower
housekeeping tasks every ``worker_interval_seconds``.
"""
from __future__ import annotations

from webhook_service.settings import settings
from webhook_service.worker import BackgroundWorker, WorkerTask
from webhook_service.workers.inbound_counter_reset import inbound_counter_reset
from webhook_service.workers.retry_deliveries import retry_due_deliveries
from webhook_service.workers.retry_reclaim import retry_reclaim_stuck

retry_worker = BackgroundWorker(
    name="retry",
    interval_seconds=settings.retry_poll_interval_seconds,
    tasks=[WorkerTask(name="retry_due_deliveries", fn=retry_due_deliveries)],
)

maintenance_worker = BackgroundWorker(
    name="maintenance",
    interval_seconds=settings.worker_interval_seconds,
    tasks=[
        WorkerTask(name="retry_reclaim_stuck", fn=retry_reclaim_stuck),
        WorkerTask(name="inbound_counter_reset", fn=inbound_counter_reset),
    ],
)

WORKERS = [retry_worker, maintenance_worker]

__all__ = [
    "WORKERS",
    "maintenance_worker",
    "retry_worker",
]
