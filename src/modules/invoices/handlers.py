"""Invoice generation driven by payment events."""

from __future__ import annotations

import structlog

from modules.fulfillment.repositories.django_repository import BatchDjangoRepository
from modules.invoices.services import InvoiceGenerator
from modules.payments.events import PaymentSettled
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class PaymentSettledInvoiceHandler(IEventHandler[PaymentSettled]):
    """Generates the sub-order invoice once its payment is committed."""

    def handle(self, event: PaymentSettled) -> None:
        invoice = InvoiceGenerator(BatchDjangoRepository()).generate(event.sub_order_id)
        logger.info(
            "invoice.payment_settled",
            sub_order_id=str(event.sub_order_id),
            invoice_number=invoice.invoice_number,
        )


payment_settled_invoice_handler = PaymentSettledInvoiceHandler()
