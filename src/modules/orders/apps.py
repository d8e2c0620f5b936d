from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.orders"
    label = "orders"

    def ready(self) -> None:
        from django.conf import settings

        from modules.orders.config import build_configuration
        from modules.orders.events import (
            OrderCreated,
            OrderStatusChanged,
            PaymentCompleted,
            RefundCreated,
        )
        from modules.orders.handlers import (
            PaymentCompletedEffectsHandler,
            StatusChangedEffectsHandler,
            order_created_handler,
            refund_created_handler,
        )
        from modules.orders.lookups import register_lookups
        from modules.orders.providers import build_effect_registry
        from shared.infrastructure.bus import event_bus

        register_lookups()

        order_types = getattr(settings, "ORDERS", {}).get("ORDER_TYPES")
        self.configuration = build_configuration(order_types)
        self.registry = build_effect_registry(self.configuration)

        event_bus.subscribe(OrderCreated, order_created_handler)
        event_bus.subscribe(RefundCreated, refund_created_handler)
        event_bus.subscribe(
            OrderStatusChanged, StatusChangedEffectsHandler(self.registry)
        )
        event_bus.subscribe(
            PaymentCompleted, PaymentCompletedEffectsHandler(self.registry)
        )
