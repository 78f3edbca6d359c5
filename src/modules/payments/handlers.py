"""Event handlers for Payments domain events."""

from __future__ import annotations

import structlog

from modules.payments.events import PaymentAborted, RefundScheduled
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class PaymentAbortedHandler(IEventHandler[PaymentAborted]):
    def handle(self, event: PaymentAborted) -> None:
        logger.info(
            "payment.session_ended",
            batch_id=str(event.aggregate_id),
            sub_order_id=str(event.sub_order_id),
            state=event.state,
            reason=event.reason,
        )


class RefundScheduledHandler(IEventHandler[RefundScheduled]):
    def handle(self, event: RefundScheduled) -> None:
        logger.info(
            "payment.refund_scheduled",
            batch_id=str(event.aggregate_id),
            refund_id=str(event.refund_id),
            amount=str(event.amount),
        )


payment_aborted_handler = PaymentAbortedHandler()
refund_scheduled_handler = RefundScheduledHandler()
