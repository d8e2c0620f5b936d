"""Celery tasks of the core module."""

from __future__ import annotations

from typing import Dict

import structlog
from celery import shared_task
from django.db import transaction
from django.db.models import Q

from modules.core.models import EventStatus, OutboxEvent
from modules.core.signals import outbox_event_ready

logger = structlog.get_logger(__name__)

MAX_RETRIES = 5


@shared_task(name="core.relay_outbox_events")
def relay_outbox_events(batch_size: int = 100) -> Dict[str, int]:
    """Deliver pending outbox events to the ``outbox_event_ready`` receivers.

    An event is marked published when no receiver fails.  Otherwise it is
    marked failed and retried up to ``MAX_RETRIES`` times.
    """
    published = failed = 0
    with transaction.atomic():
        events = list(
            OutboxEvent.objects.select_for_update(skip_locked=True)
            .filter(
                Q(status=EventStatus.PENDING)
                | Q(status=EventStatus.FAILED, retry_count__lt=MAX_RETRIES)
            )
            .order_by("created_at")[:batch_size]
        )
        for event in events:
            errors = [
                str(response)
                for _, response in outbox_event_ready.send_robust(
                    sender=OutboxEvent, event=event
                )
                if isinstance(response, Exception)
            ]
            if errors:
                event.mark_as_failed("; ".join(errors))
                failed += 1
                logger.warning(
                    "outbox.relay_failed",
                    event_id=str(event.id),
                    event_type=event.event_type,
                    retry_count=event.retry_count,
                )
            else:
                event.mark_as_published()
                published += 1

    logger.info("outbox.relayed", published=published, failed=failed)
    return {"published": published, "failed": failed}
