"""Batch API views.

Exposes ``BatchService`` (and the payment start of ``PaymentService``)
via HTTP.  Domain errors are not caught here; they propagate to the
project exception handler (``modules.core.exceptions``), which maps
their ``kind`` to a status code.
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from django.conf import settings
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.core.views import ShopperScopedViewMixin
from modules.fulfillment.dtos import (
    BatchOutputDTO,
    BatchSummaryDTO,
    ItemOutputDTO,
    ToggleItemDTO,
)
from modules.fulfillment.exceptions import ItemNotFound, SubOrderNotFound
from modules.fulfillment.filters import BatchFilter
from modules.fulfillment.models import Batch
from modules.fulfillment.proof_gate import ProofGate
from modules.fulfillment.repositories.django_repository import BatchDjangoRepository
from modules.fulfillment.serializers import ProofSerializer, ToggleItemSerializer
from modules.fulfillment.services import BatchService
from modules.invoices.services import DjangoProofStorage
from modules.payments.dtos import PaymentSessionOutputDTO
from modules.payments.repositories.django_repository import PaymentSessionDjangoRepository
from modules.payments.services import PaymentService
from modules.wallets.services import WalletService

SUB_ORDER = r"sub-orders/(?P<sub_order_id>[^/.]+)"


def _uuid(value: str, error: type, **context) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise error(**context) from None


def build_batch_service() -> BatchService:
    return BatchService(
        batch_repository=BatchDjangoRepository(),
        session_repository=PaymentSessionDjangoRepository(),
        wallet_service=WalletService(),
        proof_gate=ProofGate(DjangoProofStorage(), max_bytes=settings.PROOF_MAX_BYTES),
    )


class BatchViewSet(ShopperScopedViewMixin, GenericViewSet):
    """Shopper batch workflow.

    Only batches assigned to the requesting shopper are visible; any
    other id answers 404.  ``?shop=<shop_id>`` picks the sub-order a
    multi-shop view is about (default: the router's active shop).
    """

    queryset = Batch.objects.none()
    filterset_class = BatchFilter
    ordering_fields = ["created_at"]
    ordering = ["-created_at", "-id"]
    filter_backends = [DjangoFilterBackend, OrderingFilter]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._repository = BatchDjangoRepository()
        self._service = build_batch_service()

    def get_throttles(self) -> list[BaseThrottle]:
        self.throttle_scope = "batch_payment" if self.action == "payment" else None
        return super().get_throttles()

    def get_queryset(self):
        return self._repository.queryset({"shopper_id": self.shopper_id})

    def _shop(self, request: Request) -> Optional[str]:
        return request.query_params.get("shop") or None

    def _batch_response(self, batch, request: Request, status_code: int = status.HTTP_200_OK) -> Response:
        dto = BatchOutputDTO.from_entity(batch, self._shop(request))
        return Response(dto.model_dump(mode="json"), status=status_code)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list(self, request: Request) -> Response:
        """GET /api/v1/batches/"""
        queryset = self.filter_queryset(self.get_queryset())

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        data = [
            BatchOutputDTO.from_entity(self._repository.to_entity(row)).model_dump(mode="json")
            for row in page
        ]
        return paginator.get_paginated_response(data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/batches/{pk}/?shop=<shop_id>"""
        batch = self._service.get_batch(pk, self.shopper_id)
        return self._batch_response(batch, request)

    @action(detail=True, methods=["get"])
    def summary(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/batches/{pk}/summary/?shop=<shop_id>

        Single-shop batches summarise every item; multi-shop batches
        summarise only the selected shop's items and fees.
        """
        result = self._service.summary(pk, self.shopper_id, self._shop(request))
        return Response(BatchSummaryDTO.from_entity(result).model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Shopping
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"], url_path=f"{SUB_ORDER}/start-shopping")
    def start_shopping(self, request: Request, pk: str | None = None, sub_order_id: str = "") -> Response:
        result = self._service.start_shopping(
            pk, _uuid(sub_order_id, SubOrderNotFound, sub_order_id=sub_order_id), self.shopper_id
        )
        return self._batch_response(result.batch, request)

    @action(detail=True, methods=["post"], url_path=r"items/(?P<item_id>[^/.]+)/found")
    def found(self, request: Request, pk: str | None = None, item_id: str = "") -> Response:
        """POST /api/v1/batches/{pk}/items/{item_id}/found/

        ``{"found": true, "found_quantity": "1.5"}``; an out-of-range
        quantity is clamped to the ordered quantity (``clamped: true``).
        """
        serializer = ToggleItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dto = ToggleItemDTO(
            item_id=_uuid(item_id, ItemNotFound, item_id=item_id),
            **serializer.validated_data,
        )

        result = self._service.toggle_item(
            pk, dto.item_id, dto.found, dto.found_quantity, self.shopper_id
        )
        owner = result.batch.sub_order(result.item.sub_order_id)
        summary = self._service.summary(pk, self.shopper_id, owner.shop_id)
        return Response(
            {
                "item": ItemOutputDTO.from_entity(result.item).model_dump(mode="json"),
                "effective_quantity": (
                    None if result.effective_quantity is None else str(result.effective_quantity)
                ),
                "clamped": result.clamped,
                "summary": BatchSummaryDTO.from_entity(summary).model_dump(mode="json"),
            }
        )

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"], url_path=f"{SUB_ORDER}/payment")
    def payment(self, request: Request, pk: str | None = None, sub_order_id: str = "") -> Response:
        """POST /api/v1/batches/{pk}/sub-orders/{sub_order_id}/payment/

        Opens a payment session and sends the one-time code through the
        configured channel.  The code is never part of the response.
        """
        batch = self._service.get_batch(pk, self.shopper_id)
        session = PaymentService().start(
            batch.id,
            _uuid(sub_order_id, SubOrderNotFound, sub_order_id=sub_order_id),
            self.shopper_id,
        )
        return Response(
            PaymentSessionOutputDTO.from_entity(session).model_dump(mode="json"),
            status=status.HTTP_201_CREATED,
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"], url_path=f"{SUB_ORDER}/arrive")
    def arrive(self, request: Request, pk: str | None = None, sub_order_id: str = "") -> Response:
        result = self._service.arrive(
            pk, _uuid(sub_order_id, SubOrderNotFound, sub_order_id=sub_order_id), self.shopper_id
        )
        return self._batch_response(result.batch, request)

    @action(detail=True, methods=["post"], url_path=f"{SUB_ORDER}/proof")
    def proof(self, request: Request, pk: str | None = None, sub_order_id: str = "") -> Response:
        """POST /api/v1/batches/{pk}/sub-orders/{sub_order_id}/proof/ ``{"image": "<base64>"}``"""
        serializer = ProofSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self._service.record_proof(
            pk,
            _uuid(sub_order_id, SubOrderNotFound, sub_order_id=sub_order_id),
            serializer.validated_data["image"],
            self.shopper_id,
        )
        dto = BatchOutputDTO.from_entity(result.batch, self._shop(request))
        return Response(
            {"proof_ref": result.proof_ref, "batch": dto.model_dump(mode="json")},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path=f"{SUB_ORDER}/deliver")
    def deliver(self, request: Request, pk: str | None = None, sub_order_id: str = "") -> Response:
        result = self._service.deliver(
            pk, _uuid(sub_order_id, SubOrderNotFound, sub_order_id=sub_order_id), self.shopper_id
        )
        return self._batch_response(result.batch, request)
