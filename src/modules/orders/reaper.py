"""Unpaid order reaper.

Cancels checkout orders left in ``pending`` for longer than the store's
stock hold window, then asks the scheduler to run again one window later.
When the window is zero or stock management is off the reaper is inert and
does not reschedule.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, List, Optional, Protocol

import structlog
from django.db import IntegrityError
from django.utils import timezone

from modules.orders.config import OrderOptions, OrdersConfiguration
from modules.orders.constants import UNPAID_ORDER_NOTE, OrderStatus
from modules.orders.exceptions import OrderError, PolicyDisabled

if TYPE_CHECKING:
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.services import OrderService

logger = structlog.get_logger(__name__)


class ReaperScheduler(Protocol):
    def reschedule(self, delay_seconds: int) -> None: ...


@dataclass(frozen=True)
class ReaperResult:
    """Outcome of one reaper pass."""

    ran: bool
    cancelled: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    next_run_in: Optional[int] = None


class UnpaidOrderReaper:
    def __init__(
        self,
        order_service: OrderService,
        order_repository: IOrderRepository,
        configuration: OrdersConfiguration,
        scheduler: Optional[ReaperScheduler] = None,
        options: Callable[[], OrderOptions] = OrderOptions.from_settings,
    ) -> None:
        self._service = order_service
        self._order_repo = order_repository
        self._config = configuration
        self._scheduler = scheduler
        self._options = options

    @staticmethod
    def _held_minutes(options: OrderOptions) -> int:
        if options.hold_stock_minutes < 1 or not options.manage_stock:
            raise PolicyDisabled("Unpaid order cancellation is disabled.")
        return options.hold_stock_minutes

    def run(self, now: Optional[datetime] = None) -> ReaperResult:
        """Cancel pending orders last modified strictly before the cutoff."""
        try:
            held = self._held_minutes(self._options())
        except PolicyDisabled:
            logger.info("order.reaper_disabled")
            return ReaperResult(ran=False)

        now = now or timezone.now()
        cutoff = now - timedelta(minutes=held)
        candidates = self._order_repo.find_unpaid_ids(
            self._config.order_types.types(), cutoff
        )
        log = logger.bind(cutoff=cutoff.isoformat(), candidates=len(candidates))

        cancelled: List[int] = []
        skipped: List[int] = []
        failed: List[int] = []
        for order_id in candidates:
            order = self._order_repo.get_by_id(order_id)
            if order is None or not order.has_status(OrderStatus.PENDING):
                continue
            if not self._config.hooks.cancel_unpaid_order(order):
                skipped.append(order_id)
                continue
            try:
                self._service.update_status(
                    order_id, OrderStatus.CANCELLED, UNPAID_ORDER_NOTE
                )
            except (OrderError, IntegrityError):
                log.exception("order.reaper_cancel_failed", order_id=order_id)
                failed.append(order_id)
                continue
            cancelled.append(order_id)

        delay = held * 60
        if self._scheduler is not None:
            self._scheduler.reschedule(delay)

        log.info(
            "order.reaper_finished",
            cancelled=len(cancelled),
            skipped=len(skipped),
            failed=len(failed),
            next_run_in=delay,
        )
        return ReaperResult(
            ran=True,
            cancelled=cancelled,
            skipped=skipped,
            failed=failed,
            next_run_in=delay,
        )
