"""Django ORM implementation of the Batch repository.

Satisfies ``IBatchRepository`` using Django's QuerySet API.  Rows are
mapped to the immutable ``OrderAggregate`` on read; ``save`` writes back
only the fields a transition can change (status, proof flag, item
evaluation).

Concurrency control uses ``select_for_update()`` on the sub-order rows
of the batch.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction

from modules.core.models import EventTopic
from modules.core.outbox import dispatch
from modules.fulfillment.aggregate import (
    Item,
    OrderAggregate,
    OrderKind,
    ReelFromRestaurantOrUser,
    ReelFromShop,
    Regular,
    Restaurant,
    SubOrder,
)
from modules.fulfillment.constants import OrderKindCode
from modules.fulfillment.models import Batch, OrderItem
from modules.fulfillment.models import SubOrder as SubOrderRow
from modules.fulfillment.models import SubOrderStatusHistory
from modules.fulfillment.repositories.interfaces import IBatchRepository
from modules.fulfillment.state_machine import Transition
from shared.domain.events import DomainEvent

logger = structlog.get_logger(__name__)

TOPIC = EventTopic.FULFILLMENT


class BatchDjangoRepository(IBatchRepository):
    """Concrete Batch repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> OrderAggregate:
        batch = Batch.objects.create(
            shopper_id=data["shopper_id"],
            customer_id=str(data["customer_id"]),
            delivery_address_id=str(data.get("delivery_address_id", "")),
        )
        for position, sub_data in enumerate(data["sub_orders"]):
            row = SubOrderRow.objects.create(
                batch=batch,
                shop_id=str(sub_data["shop_id"]),
                position=position,
                is_primary=position == 0,
                service_fee=Decimal(str(sub_data.get("service_fee", "0"))),
                delivery_fee=Decimal(str(sub_data.get("delivery_fee", "0"))),
                **_kind_fields(sub_data),
            )
            OrderItem.objects.bulk_create(
                OrderItem(
                    sub_order=row,
                    product_id=str(item["product_id"]),
                    product_name=item.get("product_name", ""),
                    ordered_quantity=Decimal(str(item["quantity"])),
                    unit_price=Decimal(str(item["unit_price"])),
                )
                for item in sub_data.get("items", [])
            )

        logger.info(
            "batch.created",
            batch_id=str(batch.id),
            shopper_id=batch.shopper_id,
            sub_order_count=len(data["sub_orders"]),
        )
        return self.get_by_id(batch.id)  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: Any) -> Optional[OrderAggregate]:
        """Retrieve a batch with prefetched sub-orders and items.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            row = Batch.objects.prefetch_related("sub_orders__items").filter(id=id).first()
        except (ValueError, ValidationError):
            return None
        return _to_aggregate(row) if row else None

    def get_for_update(self, id: Any) -> Optional[OrderAggregate]:
        """Lock the batch and its sub-order rows, then load the aggregate."""
        try:
            locked = Batch.objects.select_for_update().filter(id=id).first()
        except (ValueError, ValidationError):
            return None
        if locked is None:
            return None
        list(SubOrderRow.objects.select_for_update().filter(batch_id=locked.id))
        return self.get_by_id(locked.id)

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[OrderAggregate]:
        """List batches.

        Supported filter keys:
        - ``shopper_id``
        - ``status`` (any sub-order in that status)
        - ``shop_id`` (any sub-order for that shop)
        """
        return [_to_aggregate(row) for row in self.queryset(filters)]

    def to_entity(self, row: Batch) -> OrderAggregate:
        """Map a row from ``queryset`` (sub-orders and items prefetched)."""
        return _to_aggregate(row)

    def queryset(self, filters: Optional[Dict[str, Any]] = None):
        queryset = Batch.objects.prefetch_related("sub_orders__items")
        filters = filters or {}
        if filters.get("shopper_id") is not None:
            queryset = queryset.filter(shopper_id=filters["shopper_id"])
        if filters.get("status"):
            queryset = queryset.filter(sub_orders__status=filters["status"])
        if filters.get("shop_id"):
            queryset = queryset.filter(sub_orders__shop_id=filters["shop_id"])
        return queryset.distinct()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    @transaction.atomic
    def save(self, entity: OrderAggregate) -> OrderAggregate:
        rows = {row.id: row for row in SubOrderRow.objects.filter(batch_id=entity.id)}
        for sub in entity.sub_orders:
            row = rows.get(sub.id)
            if row is None:
                raise SubOrderRow.DoesNotExist(f"Sub-order {sub.id} not found.")
            _apply(row, {"status": sub.status, "has_proof": sub.has_proof})

        items = {
            row.id: row for row in OrderItem.objects.filter(sub_order__batch_id=entity.id)
        }
        for item in entity.items():
            row = items.get(item.id)
            if row is None:
                raise OrderItem.DoesNotExist(f"Item {item.id} not found.")
            _apply(row, {"found": item.found, "found_quantity": item.found_quantity})
        return entity

    @transaction.atomic
    def record(
        self,
        entity: OrderAggregate,
        transitions: Iterable[Transition] = (),
        events: Iterable[DomainEvent] = (),
        notes: str = "",
    ) -> OrderAggregate:
        self.save(entity)
        for transition in transitions:
            self.add_history(
                transition.sub_order_id,
                transition.old_status,
                transition.new_status,
                notes=notes,
            )
        queued = dispatch(events, TOPIC)
        logger.info("batch.saved", batch_id=str(entity.id), event_count=len(queued))
        return entity

    def add_history(
        self,
        sub_order_id: UUID,
        old_status: Optional[str],
        new_status: str,
        notes: str = "",
    ) -> None:
        SubOrderStatusHistory.objects.create(
            sub_order_id=sub_order_id,
            old_status=old_status,
            new_status=new_status,
            notes=notes,
        )
        logger.info(
            "batch.history_added",
            sub_order_id=str(sub_order_id),
            old_status=old_status,
            new_status=new_status,
        )


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


def _apply(row: Any, values: Dict[str, Any]) -> None:
    changed = [field for field, value in values.items() if getattr(row, field) != value]
    if not changed:
        return
    for field in changed:
        setattr(row, field, values[field])
    row.save(update_fields=changed)


def _kind_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    kind = data.get("kind", OrderKindCode.REGULAR)
    fields: Dict[str, Any] = {"kind": kind}
    if kind in (OrderKindCode.REEL_FROM_SHOP, OrderKindCode.REEL_DIRECT):
        fields["reel_id"] = str(data["reel_id"])
        fields["reel_unit_price"] = Decimal(str(data["reel_unit_price"]))
        fields["reel_quantity"] = Decimal(str(data.get("reel_quantity", "1")))
    if kind in (OrderKindCode.REEL_DIRECT, OrderKindCode.RESTAURANT):
        fields["origin_id"] = str(data["origin_id"])
    return fields


def _kind_from_row(row: SubOrderRow) -> OrderKind:
    if row.kind == OrderKindCode.REEL_FROM_SHOP:
        return ReelFromShop(row.reel_id, row.reel_unit_price, row.reel_quantity)
    if row.kind == OrderKindCode.REEL_DIRECT:
        return ReelFromRestaurantOrUser(
            row.reel_id, row.reel_unit_price, row.reel_quantity, row.origin_id
        )
    if row.kind == OrderKindCode.RESTAURANT:
        return Restaurant(row.origin_id)
    return Regular()


def _to_item(row: OrderItem) -> Item:
    return Item(
        id=row.id,
        sub_order_id=row.sub_order_id,
        product_id=row.product_id,
        product_name=row.product_name,
        ordered_quantity=row.ordered_quantity,
        unit_price=row.unit_price,
        found=row.found,
        found_quantity=row.found_quantity if row.found else None,
    )


def _to_sub_order(row: SubOrderRow) -> SubOrder:
    return SubOrder(
        id=row.id,
        shop_id=row.shop_id,
        kind=_kind_from_row(row),
        status=row.status,
        items=tuple(_to_item(item) for item in row.items.all()),
        service_fee=row.service_fee,
        delivery_fee=row.delivery_fee,
        has_proof=row.has_proof,
        is_primary=row.is_primary,
    )


def _to_aggregate(row: Batch) -> OrderAggregate:
    subs = sorted(row.sub_orders.all(), key=lambda sub: (not sub.is_primary, sub.position))
    return OrderAggregate(
        id=row.id,
        shopper_id=row.shopper_id,
        customer_id=row.customer_id,
        delivery_address_id=row.delivery_address_id,
        primary=_to_sub_order(subs[0]),
        combined=tuple(_to_sub_order(sub) for sub in subs[1:]),
    )
