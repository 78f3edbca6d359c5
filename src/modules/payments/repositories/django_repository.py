"""Django ORM implementation of the PaymentSession repository."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from modules.core.models import EventTopic
from modules.core.outbox import dispatch
from modules.payments.constants import ACTIVE_STATES
from modules.payments.exceptions import ConcurrentSessionConflict
from modules.payments.models import PaymentSession as PaymentSessionRow
from modules.payments.repositories.interfaces import IPaymentSessionRepository
from modules.payments.session import PaymentSession
from shared.domain.events import DomainEvent

logger = structlog.get_logger(__name__)

TOPIC = EventTopic.PAYMENTS

_MUTABLE_FIELDS = (
    "state",
    "reference_id",
    "transfer_status",
    "poll_attempts",
    "cancel_requested",
    "failure_reason",
    "transaction_id",
    "refund_id",
    "last_polled_at",
)


class PaymentSessionDjangoRepository(IPaymentSessionRepository):
    """Concrete PaymentSession repository backed by Django ORM."""

    def add(self, entity: PaymentSession, events: Iterable[DomainEvent] = ()) -> PaymentSession:
        try:
            with transaction.atomic():
                PaymentSessionRow.objects.create(
                    id=entity.id,
                    session_key=entity.session_key,
                    batch_id=entity.batch_id,
                    sub_order_id=entity.sub_order_id,
                    shopper_id=entity.shopper_id,
                    customer_id=entity.customer_id,
                    amount=entity.amount,
                    original_amount=entity.original_amount,
                    currency=entity.currency,
                    otp_digest=entity.otp_digest,
                    otp_expires_at=entity.otp_expires_at,
                    state=entity.state,
                )
                dispatch(events, TOPIC)
        except IntegrityError as exc:
            raise ConcurrentSessionConflict(
                f"Sub-order {entity.sub_order_id} already has a payment in progress.",
                sub_order_id=entity.sub_order_id,
            ) from exc
        logger.info(
            "payment_session.created",
            session_key=entity.key_prefix,
            sub_order_id=str(entity.sub_order_id),
        )
        return entity

    def get_by_id(self, id: Any) -> Optional[PaymentSession]:
        try:
            row = PaymentSessionRow.objects.filter(id=id).first()
        except (ValueError, ValidationError):
            return None
        return _to_session(row) if row else None

    def get_by_key(self, session_key: str) -> Optional[PaymentSession]:
        row = PaymentSessionRow.objects.filter(session_key=session_key).first()
        return _to_session(row) if row else None

    def get_for_update(self, session_key: str) -> Optional[PaymentSession]:
        row = PaymentSessionRow.objects.select_for_update().filter(session_key=session_key).first()
        return _to_session(row) if row else None

    def get_active_for_sub_order(self, sub_order_id: UUID) -> Optional[PaymentSession]:
        row = PaymentSessionRow.objects.filter(
            sub_order_id=sub_order_id, state__in=ACTIVE_STATES
        ).first()
        return _to_session(row) if row else None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[PaymentSession]:
        queryset = PaymentSessionRow.objects.all()
        if filters:
            queryset = queryset.filter(**filters)
        return [_to_session(row) for row in queryset]

    @transaction.atomic
    def save(self, entity: PaymentSession, events: Iterable[DomainEvent] = ()) -> PaymentSession:
        values = {field: getattr(entity, field) for field in _MUTABLE_FIELDS}
        values["reference_id"] = values["reference_id"] or ""
        values["transfer_status"] = values["transfer_status"] or ""
        values["updated_at"] = timezone.now()
        updated = PaymentSessionRow.objects.filter(session_key=entity.session_key).update(**values)
        if not updated:
            raise PaymentSessionRow.DoesNotExist(f"Payment session {entity.key_prefix} not found.")
        dispatch(events, TOPIC)
        return entity

    def is_cancel_requested(self, session_key: str) -> bool:
        return PaymentSessionRow.objects.filter(
            session_key=session_key, cancel_requested=True
        ).exists()


def _to_session(row: PaymentSessionRow) -> PaymentSession:
    return PaymentSession(
        id=row.id,
        session_key=row.session_key,
        batch_id=row.batch_id,
        sub_order_id=row.sub_order_id,
        shopper_id=row.shopper_id,
        customer_id=row.customer_id,
        amount=row.amount,
        original_amount=row.original_amount,
        currency=row.currency,
        otp_digest=row.otp_digest,
        otp_expires_at=row.otp_expires_at,
        state=row.state,
        reference_id=row.reference_id or None,
        transfer_status=row.transfer_status or None,
        poll_attempts=row.poll_attempts,
        cancel_requested=row.cancel_requested,
        failure_reason=row.failure_reason,
        transaction_id=row.transaction_id,
        refund_id=row.refund_id,
        last_polled_at=row.last_polled_at,
    )
