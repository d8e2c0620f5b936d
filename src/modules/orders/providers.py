"""Construction of the order services with their Django repositories.

Views, tasks and ``OrdersConfig.ready()`` build their collaborators here so
the wiring lives in one place.
"""

from __future__ import annotations

from typing import Optional

from django.apps import apps

from modules.core.cache import VersionedCache
from modules.coupons.repositories import CouponDjangoRepository
from modules.orders.config import OrdersConfiguration, build_configuration
from modules.orders.effects import EffectRegistry, build_default_registry
from modules.orders.reaper import ReaperScheduler, UnpaidOrderReaper
from modules.orders.refunds import RefundService
from modules.orders.repositories import (
    MetadataDjangoRepository,
    OrderDjangoRepository,
    OrderItemDjangoRepository,
)
from modules.orders.search import OrderSearch
from modules.orders.services import OrderService
from modules.orders.transients import OrderTransients
from modules.products.repositories.django_repository import ProductDjangoRepository


def get_configuration() -> OrdersConfiguration:
    """The configuration built at start-up (a default one outside Django)."""
    if apps.ready:
        configuration = getattr(apps.get_app_config("orders"), "configuration", None)
        if configuration is not None:
            return configuration
    return build_configuration()


def build_order_service(
    configuration: Optional[OrdersConfiguration] = None,
) -> OrderService:
    cache = VersionedCache()
    item_repository = OrderItemDjangoRepository(cache)
    return OrderService(
        order_repository=OrderDjangoRepository(cache),
        item_repository=item_repository,
        product_repository=ProductDjangoRepository(),
        metadata_repository=MetadataDjangoRepository(),
        configuration=configuration or get_configuration(),
        cache=cache,
    )


def build_refund_service() -> RefundService:
    cache = VersionedCache()
    return RefundService(
        order_repository=OrderDjangoRepository(cache),
        item_repository=OrderItemDjangoRepository(cache),
        cache=cache,
    )


def build_effect_registry(
    configuration: Optional[OrdersConfiguration] = None,
) -> EffectRegistry:
    configuration = configuration or get_configuration()
    cache = VersionedCache()
    order_repository = OrderDjangoRepository(cache)
    item_repository = OrderItemDjangoRepository(cache)
    return build_default_registry(
        orders=order_repository,
        items=item_repository,
        metadata=MetadataDjangoRepository(),
        products=ProductDjangoRepository(),
        coupons=CouponDjangoRepository(),
        refunds=RefundService(order_repository, item_repository, cache),
        transients=OrderTransients(cache),
        hooks=configuration.hooks,
    )


def build_reaper(scheduler: Optional[ReaperScheduler] = None) -> UnpaidOrderReaper:
    configuration = get_configuration()
    return UnpaidOrderReaper(
        order_service=build_order_service(configuration),
        order_repository=OrderDjangoRepository(),
        configuration=configuration,
        scheduler=scheduler,
    )


def build_search() -> OrderSearch:
    return OrderSearch()
