"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
These are the contracts between the API layer (DRF Serializers)
and the Service layer.  DTOs are immutable (``frozen=True``).

- ``CreateOrderItemDTO`` / ``CreateOrderDTO``: order creation input.
- ``RefundLineItemDTO`` / ``CreateRefundDTO``: refund creation input.
- ``OrderQueryDTO``: ``OrderService.get_orders`` arguments, including the
  legacy argument names.
- ``OrderPage``: paginated query result.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Literal, Mapping, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from modules.orders.constants import LEGACY_STATUS_PREFIX, ItemType

ZERO = Decimal("0.00")


def strip_status_prefix(status: str) -> str:
    """Drop the legacy ``wc-`` prefix from a status name."""
    status = status.strip()
    if status.startswith(LEGACY_STATUS_PREFIX):
        return status[len(LEGACY_STATUS_PREFIX):]
    return status


# ---------------------------------------------------------------------------
# Order creation
# ---------------------------------------------------------------------------


class CreateOrderItemDTO(BaseModel):
    """Immutable DTO for one priced item of a new order.

    ``subtotal``/``total`` default to the product price times quantity when
    omitted; ``taxes`` maps tax rate ids to the tax amount of the item.
    """

    model_config = ConfigDict(frozen=True)

    item_type: Literal["line_item", "fee", "shipping"] = ItemType.LINE_ITEM.value
    product_id: Optional[UUID] = None
    name: str = ""
    quantity: int = 1
    subtotal: Optional[Decimal] = None
    total: Optional[Decimal] = None
    taxes: Dict[str, Decimal] = Field(default_factory=dict)

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v

    @model_validator(mode="after")
    def product_or_name(self):
        if self.item_type == ItemType.LINE_ITEM and not (self.product_id or self.name):
            raise ValueError("A line item needs a product or a name.")
        if self.item_type != ItemType.LINE_ITEM and self.total is None:
            raise ValueError("Fee and shipping items need a total.")
        return self


class CreateOrderDTO(BaseModel):
    """Immutable DTO for order creation requests.

    ``billing``/``shipping`` hold contact fields without prefix
    (``first_name``, ``email``...); they are stored as ``_billing_<field>``
    and ``_shipping_<field>`` order meta.
    """

    model_config = ConfigDict(frozen=True)

    items: List[CreateOrderItemDTO]
    customer_user: Optional[int] = None
    created_via: str = "api"
    billing: Dict[str, str] = Field(default_factory=dict)
    shipping: Dict[str, str] = Field(default_factory=dict)
    coupon_codes: List[str] = Field(default_factory=list)
    idempotency_key: Optional[str] = None

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(
        cls, v: List[CreateOrderItemDTO]
    ) -> List[CreateOrderItemDTO]:
        if not v:
            raise ValueError("Order must have at least one item.")
        return v

    @field_validator("coupon_codes")
    @classmethod
    def normalise_coupon_codes(cls, v: List[str]) -> List[str]:
        codes = [code.strip().lower() for code in v]
        return list(dict.fromkeys(code for code in codes if code))


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


class RefundLineItemDTO(BaseModel):
    """What to refund of one original item (all amounts positive)."""

    model_config = ConfigDict(frozen=True)

    qty: int = 0
    refund_total: Decimal = ZERO
    refund_tax: Dict[str, Decimal] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.qty and not self.refund_total and not any(
            self.refund_tax.values()
        )


class CreateRefundDTO(BaseModel):
    """Immutable DTO for refund creation.

    Negative amounts are clamped to zero.  ``line_items`` is keyed by the id
    of the original order item.
    """

    model_config = ConfigDict(frozen=True)

    order_id: int
    amount: Decimal = ZERO
    reason: Optional[str] = None
    refunded_by: str = ""
    line_items: Dict[int, RefundLineItemDTO] = Field(default_factory=dict)

    @field_validator("amount")
    @classmethod
    def amount_not_negative(cls, v: Decimal) -> Decimal:
        return max(v, ZERO).quantize(Decimal("0.01"))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


CustomerValue = Union[int, str, List[Any]]


class OrderQueryDTO(BaseModel):
    """Arguments of ``OrderService.get_orders``.

    ``status``/``type`` left as ``None`` mean "every status" and "every type
    shown in order views"; ``limit`` ``None`` means the store's page size and
    ``-1`` means unlimited.  ``offset`` wins over ``page`` when given.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status: Optional[List[str]] = None
    type: Optional[List[str]] = None
    parent: Optional[int] = None
    customer: Optional[List[CustomerValue]] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    page: int = 1
    exclude: List[int] = Field(default_factory=list)
    orderby: Literal["date", "modified", "id", "total", "rand"] = "date"
    order: Literal["ASC", "DESC"] = "DESC"
    return_as: Literal["objects", "ids"] = Field(default="objects", alias="return")
    paginate: bool = False

    @field_validator("status", mode="before")
    @classmethod
    def normalise_status(cls, v: Any) -> Any:
        if v is None or v == "any":
            return None
        values = [v] if isinstance(v, str) else list(v)
        return [strip_status_prefix(str(value)) for value in values]

    @field_validator("type", mode="before")
    @classmethod
    def normalise_type(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return [v] if isinstance(v, str) else list(v)

    @field_validator("customer", mode="before")
    @classmethod
    def normalise_customer(cls, v: Any) -> Any:
        if v is None or v == "" or v == []:
            return None
        return list(v) if isinstance(v, (list, tuple)) else [v]

    @field_validator("order", mode="before")
    @classmethod
    def normalise_order(cls, v: Any) -> Any:
        return str(v).upper()

    @field_validator("page")
    @classmethod
    def page_at_least_one(cls, v: int) -> int:
        return max(v, 1)

    @field_validator("offset")
    @classmethod
    def offset_not_negative(cls, v: Optional[int]) -> Optional[int]:
        return None if v is None else abs(v)

    @classmethod
    def from_args(
        cls, args: Mapping[str, Any], legacy_arg_map: Mapping[str, str]
    ) -> OrderQueryDTO:
        """Build a query from loose arguments, remapping legacy names."""
        values = dict(args)
        for legacy, name in legacy_arg_map.items():
            if legacy in values:
                values[name] = values.pop(legacy)
        return cls.model_validate(values)


@dataclass(frozen=True)
class OrderPage:
    """One page of ``get_orders`` results (``paginate=True``)."""

    orders: List[Any]
    total: int
    max_num_pages: int
