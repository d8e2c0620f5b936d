"""Order search by id, customer contact meta and item names.

``%`` and ``_`` in the term act as SQL wildcards unless the store enables
``SEARCH_ESCAPE_WILDCARDS``.  Matching is case-insensitive unless
``SEARCH_CASE_SENSITIVE`` is on.
"""

from __future__ import annotations

from typing import Callable, Set

import structlog
from django.db.models import CharField, F, OuterRef, Subquery, Value
from django.db.models.functions import Concat

from modules.orders.config import OrderOptions
from modules.orders.constants import MetaKey
from modules.orders.models import Order, OrderItem, OrderMeta

logger = structlog.get_logger(__name__)

ORDER_PREFIX = "Order #"


class OrderSearch:
    """Order search query."""

    def __init__(
        self, options: Callable[[], OrderOptions] = OrderOptions.from_settings
    ) -> None:
        self._options = options

    @staticmethod
    def clean_term(term: str) -> str:
        return str(term or "").replace(ORDER_PREFIX, "").strip()

    def search(self, term: str) -> Set[int]:
        """Ids of the orders matching *term*."""
        term = self.clean_term(term)
        if not term:
            return set()

        options = self._options()
        lookup = self._lookup(options)
        pattern = term if options.search_escape_wildcards else f"%{term}%"
        fields = list(options.search_fields)

        found: Set[int] = set()
        if fields:
            found.update(
                OrderMeta.objects.filter(
                    key__in=fields, **{f"value__{lookup}": pattern}
                ).values_list("order_id", flat=True)
            )

        if term.isdecimal():
            if Order.objects.filter(id=int(term)).exists():
                found.add(int(term))
        elif fields:
            found.update(self._by_full_name(lookup, pattern))
            found.update(
                OrderItem.objects.filter(**{f"name__{lookup}": pattern}).values_list(
                    "order_id", flat=True
                )
            )

        logger.info("order.searched", term=term, result_count=len(found))
        return found

    @staticmethod
    def _lookup(options: OrderOptions) -> str:
        if options.search_escape_wildcards:
            return "contains" if options.search_case_sensitive else "icontains"
        return "like" if options.search_case_sensitive else "ilike"

    @staticmethod
    def _by_full_name(lookup: str, pattern: str) -> Set[int]:
        found: Set[int] = set()
        for first_key, last_key in (
            (MetaKey.BILLING_FIRST_NAME, MetaKey.BILLING_LAST_NAME),
            (MetaKey.SHIPPING_FIRST_NAME, MetaKey.SHIPPING_LAST_NAME),
        ):
            last_name = OrderMeta.objects.filter(
                order_id=OuterRef("order_id"), key=last_key
            ).values("value")[:1]
            names = (
                OrderMeta.objects.filter(key=first_key)
                .annotate(last_name=Subquery(last_name))
                .filter(last_name__isnull=False)
                .annotate(
                    full_name=Concat(
                        F("value"),
                        Value(" "),
                        F("last_name"),
                        output_field=CharField(),
                    )
                )
                .filter(**{f"full_name__{lookup}": pattern})
            )
            found.update(names.values_list("order_id", flat=True))
        return found
