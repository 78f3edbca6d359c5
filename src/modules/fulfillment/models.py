"""Batch, SubOrder, OrderItem and SubOrderStatusHistory models.

Rows are mapped to the immutable ``OrderAggregate`` by the batch
repository; business rules live in the pure domain modules, the
database only backs the invariants with constraints:

- One sub-order per shop per batch.
- ``0 <= found_quantity <= ordered_quantity``; ``found_quantity`` only
  when ``found`` is true.
- Reel sub-orders carry their unit price and quantity; direct reels also
  carry the origin (restaurant or user) id; restaurant sub-orders carry
  the restaurant id.
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models

from modules.core.models import BaseModel
from modules.fulfillment.constants import OrderKindCode, SubOrderStatus


class Batch(BaseModel):
    """One shopper trip: a primary sub-order plus combined sub-orders."""

    shopper: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="batches",
    )
    customer_id: models.CharField = models.CharField(max_length=64)
    delivery_address_id: models.CharField = models.CharField(max_length=64)

    class Meta:
        db_table = "batches"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["shopper", "-created_at"], name="batches_shopper_created_idx"),
        ]

    def __str__(self) -> str:
        return f"Batch {self.id} (shopper {self.shopper_id})"


class SubOrder(BaseModel):
    """Primary or combined order of a batch (one shop each)."""

    batch: models.ForeignKey = models.ForeignKey(
        "fulfillment.Batch",
        on_delete=models.CASCADE,
        related_name="sub_orders",
    )
    shop_id: models.CharField = models.CharField(max_length=64)
    position: models.PositiveSmallIntegerField = models.PositiveSmallIntegerField(default=0)
    is_primary: models.BooleanField = models.BooleanField(default=False)
    kind: models.CharField = models.CharField(
        max_length=20,
        choices=OrderKindCode.choices,
        default=OrderKindCode.REGULAR,
    )
    reel_id: models.CharField = models.CharField(max_length=64, blank=True, default="")
    reel_unit_price: models.DecimalField = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True
    )
    reel_quantity: models.DecimalField = models.DecimalField(
        max_digits=10, decimal_places=3, null=True, blank=True
    )
    origin_id: models.CharField = models.CharField(max_length=64, blank=True, default="")
    service_fee: models.DecimalField = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    delivery_fee: models.DecimalField = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    status: models.CharField = models.CharField(
        max_length=20,
        choices=SubOrderStatus.choices,
        default=SubOrderStatus.ACCEPTED,
    )
    has_proof: models.BooleanField = models.BooleanField(default=False)

    class Meta:
        db_table = "sub_orders"
        ordering = ["position"]
        constraints = [
            models.UniqueConstraint(
                fields=["batch", "shop_id"],
                name="sub_orders_one_per_shop",
            ),
            models.UniqueConstraint(
                fields=["batch"],
                condition=models.Q(is_primary=True),
                name="sub_orders_one_primary",
            ),
        ]
        indexes = [
            models.Index(fields=["status"], name="sub_orders_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.shop_id} ({self.status})"


class OrderItem(BaseModel):
    """Line item of a sub-order with its found evaluation.

    ``unit_price`` is a snapshot taken when the batch was accepted.
    """

    sub_order: models.ForeignKey = models.ForeignKey(
        "fulfillment.SubOrder",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product_id: models.CharField = models.CharField(max_length=64)
    product_name: models.CharField = models.CharField(max_length=255, blank=True, default="")
    ordered_quantity: models.DecimalField = models.DecimalField(max_digits=10, decimal_places=3)
    unit_price: models.DecimalField = models.DecimalField(max_digits=12, decimal_places=2)
    found: models.BooleanField = models.BooleanField(null=True, blank=True, default=None)
    found_quantity: models.DecimalField = models.DecimalField(
        max_digits=10, decimal_places=3, null=True, blank=True
    )

    class Meta:
        db_table = "order_items"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(ordered_quantity__gt=0),
                name="order_items_ordered_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(found_quantity__isnull=True)
                | (
                    models.Q(found=True)
                    & models.Q(found_quantity__gte=0)
                    & models.Q(found_quantity__lte=models.F("ordered_quantity"))
                ),
                name="order_items_found_quantity_in_range",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.product_name or self.product_id} x{self.ordered_quantity}"


class SubOrderStatusHistory(BaseModel):
    """Append-only audit trail for sub-order status transitions.

    The internal ``paid`` step is recorded here even though it never rests
    as a committed status.
    """

    sub_order: models.ForeignKey = models.ForeignKey(
        "fulfillment.SubOrder",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    old_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=SubOrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status: models.CharField = models.CharField(
        max_length=20,
        choices=SubOrderStatus.choices,
    )
    notes: models.TextField = models.TextField(blank=True, default="")

    class Meta:
        db_table = "sub_order_status_history"
        ordering = ["created_at"]
        indexes = [
            models.Index(
                fields=["sub_order", "created_at"],
                name="sosh_sub_order_created_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.sub_order_id} : {self.old_status} -> {self.new_status}"
