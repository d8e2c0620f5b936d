"""Order API views.

Exposes ``OrderService``, ``RefundService`` and ``OrderSearch`` via HTTP
using DRF ViewSets.  Domain exceptions are caught and translated into
HTTP status codes; the view never swallows generic exceptions.
"""

from __future__ import annotations

from pydantic import ValidationError
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.orders.constants import OrderType
from modules.orders.dtos import (
    CreateOrderDTO,
    CreateOrderItemDTO,
    CreateRefundDTO,
    OrderQueryDTO,
    RefundLineItemDTO,
)
from modules.orders.exceptions import InvalidOrder, InvalidStatus, RefundCreationFailed
from modules.orders.filters import OrderNoteFilter
from modules.orders.models import Order
from modules.orders.providers import (
    build_order_service,
    build_refund_service,
    build_search,
)
from modules.orders.serializers import (
    CreateOrderSerializer,
    CreateRefundSerializer,
    OrderListSerializer,
    OrderNoteSerializer,
    OrderQuerySerializer,
    OrderSerializer,
    PaymentCompleteSerializer,
    RefundSerializer,
    UpdateStatusSerializer,
)
from modules.products.exceptions import ProductNotFound


def _not_found() -> Response:
    return Response({"detail": "Order not found."}, status=status.HTTP_404_NOT_FOUND)


def _invalid(exc: ValidationError) -> Response:
    return Response(
        {"detail": [error["msg"] for error in exc.errors()]},
        status=status.HTTP_400_BAD_REQUEST,
    )


class OrderViewSet(GenericViewSet):
    """ViewSet for Order operations.

    Uses the order services with injected repositories (DIP).
    Does **not** extend ``ModelViewSet``; all ORM access goes through
    the service/repository layer.
    """

    queryset = Order.objects.all()

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_order_service()
        self._refunds = build_refund_service()
        self._search = build_search()

    def get_throttles(self) -> list[BaseThrottle]:
        """Pick the throttle scope of the current action."""
        throttle_scope: str | None
        if self.action == "create":
            throttle_scope = "order_creation"
        elif self.action in {"list", "retrieve", "search", "notes"}:
            throttle_scope = "order_listing"
        else:
            throttle_scope = None
        self.throttle_scope = throttle_scope
        return super().get_throttles()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: Request) -> Response:
        """POST /api/v1/orders/

        Supports idempotency via the ``Idempotency-Key`` header.
        """
        create_serializer = CreateOrderSerializer(data=request.data)
        create_serializer.is_valid(raise_exception=True)

        data = create_serializer.validated_data
        try:
            dto = CreateOrderDTO(
                items=[CreateOrderItemDTO(**item) for item in data["items"]],
                customer_user=data.get("customer_user"),
                created_via=data["created_via"],
                billing=data["billing"],
                shipping=data["shipping"],
                coupon_codes=data["coupon_codes"],
                idempotency_key=request.headers.get("Idempotency-Key"),
            )
        except ValidationError as exc:
            return _invalid(exc)

        try:
            order = self._service.create_order(dto)
        except ProductNotFound as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)

        out = OrderSerializer(order)
        return Response(out.data, status=status.HTTP_201_CREATED)

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/

        Query arguments follow ``OrderQueryDTO`` (``status``, ``customer``,
        ``limit``, ``page``, ``orderby``...).  Always paginated.
        """
        query_serializer = OrderQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)
        try:
            query = OrderQueryDTO(**query_serializer.validated_data, paginate=True)
        except ValidationError as exc:
            return _invalid(exc)

        page = self._service.get_orders(query)
        return Response(
            {
                "count": page.total,
                "num_pages": page.max_num_pages,
                "results": OrderListSerializer(page.orders, many=True).data,
            }
        )

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        try:
            order = self._service.get_order(pk)
        except InvalidOrder:
            return _not_found()
        return Response(OrderSerializer(order).data)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def partial_update(self, request: Request, pk: str | None = None) -> Response:
        """PATCH /api/v1/orders/{pk}/

        Updates the order status; ``note`` is prepended to the audit note.
        """
        serializer = UpdateStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = self._service.update_status(
                pk,
                serializer.validated_data["status"],
                note=serializer.validated_data["note"],
                manual=True,
            )
        except InvalidOrder:
            return _not_found()
        except InvalidStatus as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=["post"], url_path="payment-complete")
    def payment_complete(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/payment-complete/

        409 when the order is not awaiting payment.
        """
        serializer = PaymentCompleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            accepted = self._service.payment_complete(
                pk, serializer.validated_data["transaction_id"]
            )
        except InvalidOrder:
            return _not_found()

        if not accepted:
            return Response(
                {"detail": "Order is not awaiting payment."},
                status=status.HTTP_409_CONFLICT,
            )
        return Response(OrderSerializer(self._service.get_order(pk)).data)

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    @action(detail=True, methods=["get", "post"])
    def refunds(self, request: Request, pk: str | None = None) -> Response:
        """GET/POST /api/v1/orders/{pk}/refunds/"""
        try:
            order = self._service.get_order(pk)
        except InvalidOrder:
            return _not_found()

        if request.method == "GET":
            refunds = self._service.get_orders(
                type=[OrderType.REFUND], parent=order.id, limit=-1
            )
            return Response(RefundSerializer(refunds, many=True).data)

        serializer = CreateRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        dto = CreateRefundDTO(
            order_id=order.id,
            amount=data["amount"],
            reason=data.get("reason"),
            refunded_by=str(request.user.pk or ""),
            line_items={
                line["item_id"]: RefundLineItemDTO(
                    qty=line["qty"],
                    refund_total=line["refund_total"],
                    refund_tax=line["refund_tax"],
                )
                for line in data["line_items"]
            },
        )

        try:
            refund = self._refunds.create_refund(dto)
        except RefundCreationFailed as exc:
            return Response(
                {"detail": exc.message, "code": exc.code},
                status=status.HTTP_409_CONFLICT,
            )
        return Response(RefundSerializer(refund).data, status=status.HTTP_201_CREATED)

    # ------------------------------------------------------------------
    # Notes / Search / Counts
    # ------------------------------------------------------------------

    @action(detail=True, methods=["get"])
    def notes(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/notes/"""
        try:
            order = self._service.get_order(pk)
        except InvalidOrder:
            return _not_found()

        filterset = OrderNoteFilter(request.query_params, queryset=order.notes.all())
        if not filterset.is_valid():
            return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(filterset.qs, request, view=self)
        serializer = OrderNoteSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    @action(detail=False, methods=["get"])
    def search(self, request: Request) -> Response:
        """GET /api/v1/orders/search/?term=..."""
        ids = self._search.search(request.query_params.get("term", ""))
        return Response({"ids": sorted(ids)})

    @action(detail=False, methods=["get"])
    def counts(self, request: Request) -> Response:
        """GET /api/v1/orders/counts/?status=processing"""
        status_name = request.query_params.get("status", "")
        return Response(
            {
                "status": status_name,
                "label": self._service.get_status_name(status_name),
                "count": self._service.orders_count(status_name),
            }
        )
