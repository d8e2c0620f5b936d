"""Celery tasks of the orders module."""

from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from celery import shared_task
from django.core.cache import cache

from modules.orders.config import OrderOptions

logger = structlog.get_logger(__name__)

LOCK_KEY = "orders:cancel_unpaid_orders:lock"
TASK_ID_KEY = "orders:cancel_unpaid_orders:task_id"


class CeleryReaperScheduler:
    """Keeps a single pending run of the reaper task queued.

    The id of the last queued run is kept in the cache and revoked before a
    new run is queued.
    """

    def __init__(self, task: Any) -> None:
        self._task = task

    def reschedule(self, delay_seconds: int) -> None:
        app = self._task.app
        previous: Optional[str] = cache.get(TASK_ID_KEY)
        if previous and not app.conf.task_always_eager:
            app.control.revoke(previous)
        result = self._task.apply_async(countdown=delay_seconds)
        cache.set(TASK_ID_KEY, result.id, timeout=None)
        logger.info(
            "order.reaper_rescheduled", task_id=result.id, countdown=delay_seconds
        )


@shared_task(name="orders.cancel_unpaid_orders")
def cancel_unpaid_orders() -> Dict[str, Any]:
    """Cancel pending orders older than the stock hold window."""
    from modules.orders.providers import build_reaper

    options = OrderOptions.from_settings()
    if not cache.add(LOCK_KEY, "1", timeout=options.reaper_lock_timeout):
        logger.info("order.reaper_locked")
        return {"status": "locked"}

    try:
        result = build_reaper(CeleryReaperScheduler(cancel_unpaid_orders)).run()
    finally:
        cache.delete(LOCK_KEY)

    return {
        "status": "ok" if result.ran else "disabled",
        "cancelled": result.cancelled,
        "skipped": result.skipped,
        "failed": result.failed,
    }
