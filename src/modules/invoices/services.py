"""Proof storage and invoice generation.

Django implementations of the ``IProofStorage`` and ``IInvoiceGenerator``
collaborators.  Images go through the configured default storage.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

import structlog
from django.core.exceptions import ValidationError
from django.core.files.base import ContentFile
from django.db import transaction

from modules.fulfillment import calculator
from modules.fulfillment.aggregate import OrderAggregate, SubOrder, finds_items_individually, is_reel
from modules.fulfillment.constants import FeeType
from modules.fulfillment.exceptions import SubOrderNotFound
from modules.fulfillment.interfaces import IInvoiceGenerator, IProofStorage
from modules.fulfillment.models import SubOrder as SubOrderRow
from modules.fulfillment.repositories.interfaces import IBatchRepository
from modules.invoices.models import Invoice, InvoiceProof

logger = structlog.get_logger(__name__)

_EXTENSIONS = (
    (b"\xff\xd8\xff", "jpg"),
    (b"\x89PNG", "png"),
    (b"GIF8", "gif"),
    (b"RIFF", "webp"),
)


def _extension(image: bytes) -> str:
    for signature, extension in _EXTENSIONS:
        if image.startswith(signature):
            return extension
    return "bin"


class DjangoProofStorage(IProofStorage):
    @transaction.atomic
    def store(self, sub_order_id: UUID, image: bytes) -> str:
        name = f"{uuid4().hex}.{_extension(image)}"
        proof = InvoiceProof.objects.filter(sub_order_id=sub_order_id).first()
        if proof is None:
            proof = InvoiceProof(sub_order_id=sub_order_id)
        elif proof.image:
            proof.image.delete(save=False)
        proof.image = ContentFile(image, name=name)
        proof.size = len(image)
        proof.save()

        proof_ref = proof.image.name
        Invoice.objects.filter(sub_order_id=sub_order_id).update(proof_ref=proof_ref)
        logger.info("proof.stored", sub_order_id=str(sub_order_id), proof_ref=proof_ref)
        return proof_ref

    def has_proof(self, sub_order_id: UUID) -> bool:
        return InvoiceProof.objects.filter(sub_order_id=sub_order_id).exists()


class InvoiceGenerator(IInvoiceGenerator):
    """Builds one invoice per sub-order from the found items."""

    def __init__(self, batch_repository: IBatchRepository) -> None:
        self._batch_repo = batch_repository

    @transaction.atomic
    def generate(self, sub_order_id: UUID, proof_ref: Optional[str] = None) -> Invoice:
        existing = Invoice.objects.filter(sub_order_id=sub_order_id).first()
        if existing is not None:
            if proof_ref and existing.proof_ref != proof_ref:
                existing.proof_ref = proof_ref
                existing.save(update_fields=["proof_ref"])
            return existing

        batch_id = (
            SubOrderRow.objects.filter(id=sub_order_id).values_list("batch_id", flat=True).first()
        )
        batch = self._batch_repo.get_by_id(batch_id) if batch_id else None
        if batch is None:
            raise SubOrderNotFound(f"Sub-order {sub_order_id} not found.", sub_order_id=sub_order_id)
        sub = batch.sub_order(sub_order_id)

        subtotal = calculator.found_subtotal(batch, sub.id)
        service_fee = calculator.fee(batch, FeeType.SERVICE, sub.id)
        delivery_fee = calculator.fee(batch, FeeType.DELIVERY, sub.id)
        invoice = Invoice.objects.create(
            sub_order_id=sub.id,
            batch_id=batch.id,
            customer_id=batch.customer_id,
            items=invoice_lines(batch, sub),
            subtotal=subtotal,
            service_fee=service_fee,
            delivery_fee=delivery_fee,
            total_amount=calculator.money(subtotal + service_fee + delivery_fee),
            proof_ref=proof_ref or "",
        )
        logger.info(
            "invoice.generated",
            invoice_number=invoice.invoice_number,
            sub_order_id=str(sub.id),
            total=str(invoice.total_amount),
        )
        return invoice

    def get(self, invoice_id: Any) -> Optional[Invoice]:
        """Returns ``None`` for non-existent or invalid IDs."""
        try:
            return Invoice.objects.select_related("batch").filter(id=invoice_id).first()
        except (ValueError, ValidationError):
            return None


def invoice_lines(batch: OrderAggregate, sub: SubOrder) -> List[Dict[str, str]]:
    kind = sub.kind
    if is_reel(kind):
        return [
            {
                "product_id": kind.reel_id,
                "name": "Reel",
                "quantity": str(kind.quantity),
                "unit_price": str(kind.unit_price),
                "total": str(calculator.money(kind.unit_price * kind.quantity)),
            }
        ]
    if finds_items_individually(kind):
        items = [item for item in batch.items_for(sub.id) if item.found]
        return [
            {
                "product_id": item.product_id,
                "name": item.product_name,
                "quantity": str(item.found_quantity),
                "unit_price": str(item.unit_price),
                "total": str(calculator.found_line_total(item)),
            }
            for item in items
        ]
    return [
        {
            "product_id": item.product_id,
            "name": item.product_name,
            "quantity": str(item.ordered_quantity),
            "unit_price": str(item.unit_price),
            "total": str(calculator.line_total(item)),
        }
        for item in batch.items_for(sub.id)
    ]
