"""PaymentSession model.

One row per payment attempt.  A conditional unique constraint allows at
most one session in an active state per sub-order.  The one-time code
itself is never stored, only its digest.
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models

from modules.core.models import BaseModel
from modules.payments.constants import ACTIVE_STATES, SessionState, TransferStatus


class PaymentSession(BaseModel):
    session_key: models.CharField = models.CharField(max_length=64, unique=True)
    batch: models.ForeignKey = models.ForeignKey(
        "fulfillment.Batch",
        on_delete=models.CASCADE,
        related_name="payment_sessions",
    )
    sub_order: models.ForeignKey = models.ForeignKey(
        "fulfillment.SubOrder",
        on_delete=models.CASCADE,
        related_name="payment_sessions",
    )
    shopper: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payment_sessions",
    )
    customer_id: models.CharField = models.CharField(max_length=64)
    amount: models.DecimalField = models.DecimalField(max_digits=12, decimal_places=2)
    original_amount: models.DecimalField = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    currency: models.CharField = models.CharField(max_length=3)
    otp_digest: models.CharField = models.CharField(max_length=64)
    otp_expires_at: models.DateTimeField = models.DateTimeField()
    state: models.CharField = models.CharField(
        max_length=20,
        choices=SessionState.choices,
        default=SessionState.AWAITING_OTP,
    )
    reference_id: models.CharField = models.CharField(max_length=64, blank=True, default="")
    transfer_status: models.CharField = models.CharField(
        max_length=12, choices=TransferStatus.choices, blank=True, default=""
    )
    poll_attempts: models.PositiveIntegerField = models.PositiveIntegerField(default=0)
    cancel_requested: models.BooleanField = models.BooleanField(default=False)
    failure_reason: models.CharField = models.CharField(max_length=64, blank=True, default="")
    transaction_id: models.UUIDField = models.UUIDField(null=True, blank=True)
    refund_id: models.UUIDField = models.UUIDField(null=True, blank=True)
    last_polled_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "payment_sessions"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["sub_order"],
                condition=models.Q(state__in=sorted(ACTIVE_STATES)),
                name="payment_sessions_one_active_per_sub_order",
            ),
        ]
        indexes = [
            models.Index(fields=["sub_order", "state"], name="payment_sessions_sub_state_idx"),
        ]

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    def __str__(self) -> str:
        return f"{self.session_key[:6]}… {self.sub_order_id} ({self.state})"
