"""Order URL configuration.

Routes (under ``/api/v1/``):
``orders/``, ``orders/{id}/``, ``orders/{id}/payment-complete/``,
``orders/{id}/refunds/``, ``orders/{id}/notes/``, ``orders/search/`` and
``orders/counts/``.
"""

from __future__ import annotations

from rest_framework.routers import DefaultRouter

from modules.orders.views import OrderViewSet

app_name = "orders"

router = DefaultRouter(trailing_slash=True)
router.register("orders", OrderViewSet, basename="order")

urlpatterns = router.urls
