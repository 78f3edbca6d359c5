"""Invoice and InvoiceProof models.

- One invoice per sub-order, generated after payment success.
- ``invoice_number`` is a human-readable identifier auto-generated on
  first save (format: ``INV-YYYYMMDD-XXXXXX``).
- One proof image per sub-order; recording again replaces it.
"""

from __future__ import annotations

import secrets
from decimal import Decimal
from typing import Any

from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel

INVOICE_NUMBER_MAX_RETRIES = 5


class InvoiceStatus(models.TextChoices):
    COMPLETED = "completed", "Completed"


def proof_upload_to(instance: "InvoiceProof", filename: str) -> str:
    return f"proofs/{instance.sub_order_id}/{filename}"


class Invoice(BaseModel):
    invoice_number: models.CharField = models.CharField(
        max_length=20, unique=True, editable=False
    )
    sub_order: models.OneToOneField = models.OneToOneField(
        "fulfillment.SubOrder",
        on_delete=models.PROTECT,
        related_name="invoice",
    )
    batch: models.ForeignKey = models.ForeignKey(
        "fulfillment.Batch",
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    customer_id: models.CharField = models.CharField(max_length=64)
    items: models.JSONField = models.JSONField(default=list)
    subtotal: models.DecimalField = models.DecimalField(max_digits=14, decimal_places=2)
    service_fee: models.DecimalField = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    delivery_fee: models.DecimalField = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    tax: models.DecimalField = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    total_amount: models.DecimalField = models.DecimalField(max_digits=14, decimal_places=2)
    status: models.CharField = models.CharField(
        max_length=20, choices=InvoiceStatus.choices, default=InvoiceStatus.COMPLETED
    )
    proof_ref: models.CharField = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        db_table = "invoices"
        ordering = ["-created_at"]

    @staticmethod
    def generate_invoice_number() -> str:
        now = timezone.now()
        suffix = secrets.token_hex(3).upper()
        return f"INV-{now:%Y%m%d}-{suffix}"

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.invoice_number:
            for _ in range(INVOICE_NUMBER_MAX_RETRIES):
                candidate = self.generate_invoice_number()
                if not Invoice.objects.filter(invoice_number=candidate).exists():
                    self.invoice_number = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique invoice_number after "
                    f"{INVOICE_NUMBER_MAX_RETRIES} attempts"
                )
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.invoice_number} ({self.total_amount})"


class InvoiceProof(BaseModel):
    sub_order: models.OneToOneField = models.OneToOneField(
        "fulfillment.SubOrder",
        on_delete=models.CASCADE,
        related_name="proof",
    )
    image: models.FileField = models.FileField(upload_to=proof_upload_to)
    size: models.PositiveIntegerField = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "invoice_proofs"

    def __str__(self) -> str:
        return f"Proof for {self.sub_order_id}"
