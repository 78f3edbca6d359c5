"""Payment service layer.

Wires ``PaymentCoordinator`` to the Django repositories, the wallet
service and the configured gateway/OTP channel, and moves transfer
polling into a Celery task once the code is verified.
"""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

import structlog
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from modules.core.middleware import correlation_id_var
from modules.fulfillment.repositories.django_repository import BatchDjangoRepository
from modules.payments.channels import otp_channel_from_settings
from modules.payments.coordinator import PaymentCoordinator, PaymentSettings
from modules.payments.gateways import gateway_from_settings
from modules.payments.interfaces import SettlementRecord
from modules.payments.repositories.django_repository import PaymentSessionDjangoRepository
from modules.payments.repositories.interfaces import IPaymentSessionRepository
from modules.payments.session import PaymentSession, StoredCancellationToken
from modules.wallets.services import WalletService

logger = structlog.get_logger(__name__)


def payment_settings() -> PaymentSettings:
    return PaymentSettings(
        otp_length=settings.PAYMENT_OTP_LENGTH,
        otp_ttl_seconds=settings.PAYMENT_OTP_TTL_SECONDS,
        poll_interval_seconds=settings.PAYMENT_POLL_INTERVAL_SECONDS,
        poll_max_attempts=settings.PAYMENT_POLL_MAX_ATTEMPTS,
        stale_grace_seconds=settings.PAYMENT_STALE_GRACE_SECONDS,
        currency=settings.PAYMENT_CURRENCY,
    )


def build_coordinator(
    sessions: Optional[IPaymentSessionRepository] = None,
) -> PaymentCoordinator:
    return PaymentCoordinator(
        batches=BatchDjangoRepository(),
        sessions=sessions or PaymentSessionDjangoRepository(),
        wallet=WalletService(),
        gateway=gateway_from_settings(),
        otp_channel=otp_channel_from_settings(),
        settings=payment_settings(),
        unit_of_work=transaction.atomic,
        clock=timezone.now,
    )


class PaymentService:
    """Entry point used by the API and the polling task."""

    def __init__(
        self,
        coordinator: Optional[PaymentCoordinator] = None,
        session_repository: Optional[IPaymentSessionRepository] = None,
    ) -> None:
        self._sessions = session_repository or PaymentSessionDjangoRepository()
        self._coordinator = coordinator or build_coordinator(self._sessions)

    def start(self, batch_id: UUID, sub_order_id: UUID, shopper_id: Optional[int] = None) -> PaymentSession:
        return self._coordinator.begin(batch_id, sub_order_id, shopper_id)

    def verify(
        self,
        session_key: str,
        code: str,
        payer_code: str,
        shopper_id: Optional[int] = None,
    ) -> PaymentSession:
        """Verify the code, start the transfer and schedule polling."""
        session = self._coordinator.verify_otp(session_key, code, payer_code, shopper_id)
        self.schedule_poll(session.session_key)
        return session

    @staticmethod
    def schedule_poll(session_key: str) -> None:
        from modules.payments.tasks import poll_transfer

        correlation_id = correlation_id_var.get() or None
        transaction.on_commit(
            lambda: poll_transfer.delay(session_key, correlation_id=correlation_id)
        )

    def poll(self, session_key: str) -> SettlementRecord:
        token = StoredCancellationToken(lambda: self._sessions.is_cancel_requested(session_key))
        return self._coordinator.poll(session_key, token)

    def cancel(self, session_key: str, shopper_id: Optional[int] = None) -> PaymentSession:
        return self._coordinator.cancel(session_key, shopper_id)

    def get(self, session_key: str, shopper_id: Optional[int] = None) -> PaymentSession:
        return self._coordinator.get(session_key, shopper_id)

    def settle(self, session_key: str) -> SettlementRecord:
        return self._coordinator.settle(session_key)

    def list_for_sub_order(self, sub_order_id: Any) -> list[PaymentSession]:
        return self._sessions.list({"sub_order_id": sub_order_id})
