"""Wallet, WalletTransaction and Refund models.

- Each shopper owns one wallet with an available and a reserved balance.
- Every balance movement is a ``WalletTransaction`` with a unique
  idempotency key, so replays never move money twice.
- ``Refund`` rows are scheduled for the customer when found items are
  worth less than what was ordered.  They start ``pending`` and unpaid.
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models

from modules.core.models import BaseModel


class TransactionType(models.TextChoices):
    RESERVE = "reserve", "Reserve"
    EARNINGS = "earnings", "Earnings"
    PAYMENT = "payment", "Payment"


class RefundStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"


class Wallet(BaseModel):
    shopper: models.OneToOneField = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="wallet",
    )
    available_balance: models.DecimalField = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    reserved_balance: models.DecimalField = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    currency: models.CharField = models.CharField(max_length=3, default="RWF")

    class Meta:
        db_table = "wallets"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(reserved_balance__gte=0),
                name="wallets_reserved_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Wallet {self.shopper_id} ({self.reserved_balance} reserved)"


class WalletTransaction(BaseModel):
    wallet: models.ForeignKey = models.ForeignKey(
        "wallets.Wallet",
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    type: models.CharField = models.CharField(max_length=20, choices=TransactionType.choices)
    amount: models.DecimalField = models.DecimalField(max_digits=14, decimal_places=2)
    sub_order: models.ForeignKey = models.ForeignKey(
        "fulfillment.SubOrder",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="wallet_transactions",
    )
    description: models.CharField = models.CharField(max_length=255, blank=True, default="")
    idempotency_key: models.CharField = models.CharField(max_length=255, unique=True)

    class Meta:
        db_table = "wallet_transactions"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["wallet", "-created_at"], name="wallet_tx_wallet_created_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.type} {self.amount} ({self.idempotency_key})"


class Refund(BaseModel):
    sub_order: models.ForeignKey = models.ForeignKey(
        "fulfillment.SubOrder",
        on_delete=models.PROTECT,
        related_name="refunds",
    )
    batch: models.ForeignKey = models.ForeignKey(
        "fulfillment.Batch",
        on_delete=models.PROTECT,
        related_name="refunds",
    )
    transaction: models.ForeignKey = models.ForeignKey(
        "wallets.WalletTransaction",
        on_delete=models.PROTECT,
        related_name="refunds",
    )
    customer_id: models.CharField = models.CharField(max_length=64)
    amount: models.DecimalField = models.DecimalField(max_digits=14, decimal_places=2)
    status: models.CharField = models.CharField(
        max_length=20, choices=RefundStatus.choices, default=RefundStatus.PENDING
    )
    reason: models.TextField = models.TextField()
    generated_by: models.CharField = models.CharField(max_length=50, default="System")
    paid: models.BooleanField = models.BooleanField(default=False)
    idempotency_key: models.CharField = models.CharField(max_length=255, unique=True)

    class Meta:
        db_table = "refunds"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="refunds_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Refund {self.amount} for {self.sub_order_id} ({self.status})"
