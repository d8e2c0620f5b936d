"""Concurrent effect dispatch integration test.

Proves that the row lock taken by ``EffectRegistry.dispatch`` serialises
the check-then-mark sequence of an effect, so concurrent deliveries of the
same ``payment_complete`` event reduce stock exactly once.

Scenario:
- Product "Stocked" with **stock = 10**, an order for 3 units.
- 8 threads dispatch ``payment_complete`` for that order simultaneously.
- Exactly 1 dispatch applies ``reduce_order_stock``.
- Final stock is 7.

Uses ``TransactionTestCase`` so each thread sees committed data.  Needs a
backend with ``SELECT ... FOR UPDATE`` (PostgreSQL, MySQL); skipped on
SQLite.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from decimal import Decimal
from unittest import skipUnless

import pytest
from django.db import connection, connections
from django.test import TransactionTestCase

from modules.orders.constants import PAYMENT_COMPLETE_EVENT, MetaKey
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO
from modules.orders.models import OrderNote
from modules.orders.providers import build_effect_registry, build_order_service
from modules.products.models import Product

logger = logging.getLogger(__name__)

pytestmark = pytest.mark.integration

INITIAL_STOCK = 10
QUANTITY = 3
NUM_WORKERS = 8


@skipUnless(
    connection.features.has_select_for_update,
    "row-level locks are required",
)
class TestConcurrentStockReduction(TransactionTestCase):
    """Prove a single stock reduction under concurrent dispatches."""

    def setUp(self):
        self.product = Product.objects.create(
            sku="STOCKED-1",
            name="Stocked",
            price=Decimal("10.00"),
            manage_stock=True,
            stock_quantity=INITIAL_STOCK,
        )
        self.order = build_order_service().create_order(
            CreateOrderDTO(
                items=[
                    CreateOrderItemDTO(product_id=self.product.id, quantity=QUANTITY)
                ]
            )
        )

    def _dispatch_in_thread(self, thread_id: int) -> list:
        """Dispatch ``payment_complete`` on a connection of its own."""
        connections.close_all()
        try:
            applied = build_effect_registry().dispatch(
                PAYMENT_COMPLETE_EVENT, self.order.id
            )
            logger.warning("Thread %d: applied %s", thread_id, applied)
            return applied
        finally:
            connections.close_all()

    def test_concurrent_dispatches_reduce_stock_once(self):
        results = []

        with ThreadPoolExecutor(max_workers=NUM_WORKERS) as pool:
            futures = [
                pool.submit(self._dispatch_in_thread, i) for i in range(NUM_WORKERS)
            ]
            for future in as_completed(futures):
                results.append(future.result())

        reductions = sum("reduce_order_stock" in applied for applied in results)
        self.assertEqual(reductions, 1, f"Expected 1 reduction, got {reductions}")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, INITIAL_STOCK - QUANTITY)
        self.assertEqual(self.order.get_meta(MetaKey.STOCK_REDUCED), "1")
        self.assertEqual(
            OrderNote.objects.filter(
                order_id=self.order.id, note__contains="stock reduced"
            ).count(),
            1,
        )
