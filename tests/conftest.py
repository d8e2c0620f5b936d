from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from django.apps import apps
from django.contrib.auth import get_user_model
from django.core.cache import cache

from rest_framework.test import APIClient

from modules.coupons.models import Coupon
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO
from modules.orders.providers import build_order_service, build_refund_service
from modules.products.models import Product, ProductDownload


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _clear_cache():
    """Local-memory cache outlives the test transaction; ids get reused."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


@pytest.fixture()
def auth_client():
    """APIClient with a force-authenticated Django user."""
    client = APIClient()
    user = get_user_model().objects.create_user(
        username=f"user-{uuid4().hex[:8]}", password="testpass123"
    )
    client.force_authenticate(user=user)
    return client


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def configuration():
    return apps.get_app_config("orders").configuration


@pytest.fixture()
def registry():
    return apps.get_app_config("orders").registry


@pytest.fixture()
def order_service():
    return build_order_service()


@pytest.fixture()
def refund_service():
    return build_refund_service()


@pytest.fixture()
def make_product():
    def _make(**overrides) -> Product:
        defaults = {
            "sku": f"SKU-{uuid4().hex[:8]}",
            "name": "Widget",
            "price": Decimal("10.00"),
        }
        defaults.update(overrides)
        return Product.objects.create(**defaults)

    return _make


@pytest.fixture()
def stocked_product(make_product):
    return make_product(
        sku="STOCKED-1", name="Stocked", manage_stock=True, stock_quantity=10
    )


@pytest.fixture()
def downloadable_product(make_product):
    product = make_product(
        sku="EBOOK-1",
        name="E-book",
        price=Decimal("25.00"),
        virtual=True,
        downloadable=True,
        download_limit=3,
        download_expiry=30,
    )
    ProductDownload.objects.create(
        product=product,
        download_id="ebook-pdf",
        name="E-book (PDF)",
        file_url="https://files.example.com/ebook.pdf",
    )
    return product


@pytest.fixture()
def coupon():
    return Coupon.objects.create(code="SAVE10")


@pytest.fixture()
def make_order(order_service):
    """Create an order through ``OrderService.create_order``.

    ``products`` is a list of ``(product, quantity)`` pairs; without it a
    single named 100.00 line is created.
    """

    def _make(products=None, **overrides):
        items = [
            CreateOrderItemDTO(product_id=product.id, quantity=quantity)
            for product, quantity in (products or [])
        ] or [
            CreateOrderItemDTO(
                name="Service fee",
                quantity=1,
                subtotal=Decimal("100.00"),
                total=Decimal("100.00"),
            )
        ]
        data = {
            "items": items,
            "billing": {
                "first_name": "Ada",
                "last_name": "Lovelace",
                "email": "ada@example.com",
                "city": "London",
            },
        }
        data.update(overrides)
        return order_service.create_order(CreateOrderDTO(**data))

    return _make
