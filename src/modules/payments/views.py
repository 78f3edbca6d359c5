"""Payment session API views.

Sessions are addressed by their key.  Verifying the code starts the
transfer and hands polling to the ``payments.poll_transfer`` task; the
client follows progress with ``GET /payments/{key}/``.
"""

from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import action
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.core.views import ShopperScopedViewMixin
from modules.payments.dtos import PaymentSessionOutputDTO
from modules.payments.models import PaymentSession
from modules.payments.serializers import VerifyOtpSerializer
from modules.payments.services import PaymentService


class PaymentSessionViewSet(ShopperScopedViewMixin, GenericViewSet):
    queryset = PaymentSession.objects.none()
    lookup_field = "session_key"
    lookup_value_regex = r"[A-Za-z0-9_\-]+"

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = PaymentService()

    def get_throttles(self) -> list[BaseThrottle]:
        self.throttle_scope = "payment_otp" if self.action == "verify_otp" else None
        return super().get_throttles()

    def _render(self, session, status_code: int = status.HTTP_200_OK) -> Response:
        return Response(
            PaymentSessionOutputDTO.from_entity(session).model_dump(mode="json"),
            status=status_code,
        )

    def retrieve(self, request: Request, session_key: str | None = None) -> Response:
        """GET /api/v1/payments/{session_key}/"""
        return self._render(self._service.get(session_key, self.shopper_id))

    @action(detail=True, methods=["post"], url_path="verify-otp")
    def verify_otp(self, request: Request, session_key: str | None = None) -> Response:
        """POST /api/v1/payments/{session_key}/verify-otp/ ``{code, payer_code}``

        Returns 202: the transfer has started and is being polled.
        """
        serializer = VerifyOtpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        session = self._service.verify(
            session_key,
            serializer.validated_data["code"],
            serializer.validated_data["payer_code"],
            self.shopper_id,
        )
        return self._render(session, status.HTTP_202_ACCEPTED)

    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, session_key: str | None = None) -> Response:
        """POST /api/v1/payments/{session_key}/cancel/

        A transfer that already succeeded still settles.
        """
        return self._render(self._service.cancel(session_key, self.shopper_id))
