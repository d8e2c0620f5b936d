import time
from typing import Any, Callable, Dict

import structlog
from django.core.cache import cache
from django.db import connections
from django.http import HttpRequest, JsonResponse
from django.utils import timezone

from modules.orders.config import OrderOptions
from modules.orders.tasks import TASK_ID_KEY

logger = structlog.get_logger()


def _check_database() -> None:
    conn = connections["default"]
    conn.ensure_connection()
    with conn.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()


def _check_cache() -> None:
    cache.set("_health_check", "ok", 10)
    if cache.get("_health_check") != "ok":
        raise ConnectionError("Cache read failed")


def _probe(name: str, check: Callable[[], None]) -> Dict[str, Any]:
    start = time.monotonic()
    try:
        check()
    except Exception:
        logger.error(f"health_check_{name}_failure")
        return {"status": "down"}
    return {
        "status": "up",
        "response_time_ms": round((time.monotonic() - start) * 1000, 2),
    }


def _reaper_status() -> Dict[str, Any]:
    options = OrderOptions.from_settings()
    enabled = options.manage_stock and options.hold_stock_minutes > 0
    return {
        "enabled": enabled,
        "hold_stock_minutes": options.hold_stock_minutes,
        "scheduled_task_id": cache.get(TASK_ID_KEY) if enabled else None,
    }


def health_check(request: HttpRequest) -> JsonResponse:
    services: Dict[str, Dict[str, Any]] = {
        "database": _probe("db", _check_database),
        "cache": _probe("cache", _check_cache),
    }
    overall_healthy = all(s["status"] == "up" for s in services.values())

    if services["cache"]["status"] == "up":
        services["unpaid_order_reaper"] = _reaper_status()

    logger.info(
        "health_check_completed", status="healthy" if overall_healthy else "unhealthy"
    )

    return JsonResponse(
        {
            "status": "healthy" if overall_healthy else "unhealthy",
            "timestamp": timezone.now().isoformat(),
            "services": services,
        },
        status=200 if overall_healthy else 503,
    )
