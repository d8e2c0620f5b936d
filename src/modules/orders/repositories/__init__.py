"""Order repositories package."""

from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.repositories.interfaces import (
    IMetadataRepository,
    IOrderItemRepository,
    IOrderRepository,
)
from modules.orders.repositories.item_repository import OrderItemDjangoRepository
from modules.orders.repositories.metadata_repository import MetadataDjangoRepository

__all__ = [
    "IMetadataRepository",
    "IOrderItemRepository",
    "IOrderRepository",
    "MetadataDjangoRepository",
    "OrderDjangoRepository",
    "OrderItemDjangoRepository",
]
