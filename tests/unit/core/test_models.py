"""Unit tests for TimestampedModel and BaseModel.

Exercised through concrete project models: ``Order`` (integer PK) and
``Product`` (UUIDv7 PK).
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from freezegun import freeze_time

from modules.orders.models import Order
from modules.products.models import Product

pytestmark = pytest.mark.unit


class TestTimestampedModel:
    def test_timestamps_are_set_on_create(self):
        order = Order.objects.create()
        assert order.created_at is not None
        assert order.updated_at is not None

    def test_update_fields_also_refreshes_updated_at(self):
        with freeze_time("2024-01-01 10:00:00"):
            order = Order.objects.create()
        with freeze_time("2024-01-01 12:00:00"):
            order.total = Decimal("5.00")
            order.save(update_fields=["total"])
        order.refresh_from_db()
        assert order.updated_at - order.created_at == timedelta(hours=2)

    def test_integer_primary_key(self):
        assert isinstance(Order.objects.create().pk, int)


class TestBaseModel:
    def test_id_is_uuid7(self):
        product = Product.objects.create(sku="uuid-1", name="P", price=Decimal("1"))
        assert isinstance(product.id, uuid.UUID)
        assert product.id.version == 7

    def test_ids_are_time_ordered(self):
        first = Product.objects.create(sku="ord-1", name="A", price=Decimal("1"))
        second = Product.objects.create(sku="ord-2", name="B", price=Decimal("1"))
        assert first.id < second.id

    def test_sku_is_normalised(self):
        product = Product.objects.create(sku=" abc-1 ", name="A", price=Decimal("1"))
        assert product.sku == "ABC-1"
