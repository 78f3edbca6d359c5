"""Combined-Order Router.

Maps "act on shop X" to the sub-order that owns shop X and scopes items
and totals to it.  Summaries are built from de-duplicated items, and each
sub-order's fees are counted once.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

from modules.fulfillment import calculator
from modules.fulfillment.aggregate import Item, OrderAggregate, SubOrder, Target
from modules.fulfillment.constants import ALL, PRE_DELIVERY_STATES, TERMINAL_STATES, FeeType


@dataclass(frozen=True)
class ShopTotals:
    sub_order_id: UUID
    shop_id: str
    status: str
    original_subtotal: Decimal
    found_subtotal: Decimal
    refund: Decimal
    service_fee: Decimal
    delivery_fee: Decimal


@dataclass(frozen=True)
class BatchSummary:
    target: str
    is_multi_shop: bool
    item_count: int
    found_count: int
    original_subtotal: Decimal
    found_subtotal: Decimal
    refund: Decimal
    service_fee: Decimal
    delivery_fee: Decimal
    total: Decimal
    shops: Tuple[ShopTotals, ...]


def is_multi_shop(batch: OrderAggregate) -> bool:
    return batch.is_multi_shop


def default_active_shop(batch: OrderAggregate) -> str:
    """The primary's shop for a single sub-order, else the first combined
    sub-order still before delivery.

    Once every combined sub-order is past delivery the first one not yet
    delivered wins, then the primary.
    """
    if not batch.combined:
        return batch.primary.shop_id
    for sub in batch.combined:
        if sub.status in PRE_DELIVERY_STATES:
            return sub.shop_id
    for sub in batch.sub_orders:
        if sub.status not in TERMINAL_STATES:
            return sub.shop_id
    return batch.primary.shop_id


def resolve(batch: OrderAggregate, shop_id: Optional[str] = None) -> SubOrder:
    """Sub-order for ``shop_id`` (default active shop when omitted)."""
    return batch.sub_order_for_shop(shop_id or default_active_shop(batch))


def display_target(batch: OrderAggregate, shop_id: Optional[str] = None) -> Target:
    """Calculator target for the current view: ``ALL`` for single-shop batches."""
    if len(batch.sub_orders) == 1:
        return ALL
    return resolve(batch, shop_id).id


def scoped_items(batch: OrderAggregate, shop_id: Optional[str] = None) -> Tuple[Item, ...]:
    return batch.items_for(resolve(batch, shop_id).id)


def shop_totals(batch: OrderAggregate, sub: SubOrder) -> ShopTotals:
    return ShopTotals(
        sub_order_id=sub.id,
        shop_id=sub.shop_id,
        status=sub.status,
        original_subtotal=calculator.original_subtotal(batch, sub.id),
        found_subtotal=calculator.found_subtotal(batch, sub.id),
        refund=calculator.refund_amount(batch, sub.id),
        service_fee=calculator.fee(batch, FeeType.SERVICE, sub.id),
        delivery_fee=calculator.fee(batch, FeeType.DELIVERY, sub.id),
    )


def summary(batch: OrderAggregate, target: Target = ALL) -> BatchSummary:
    items = batch.items_for(target)
    service_fee = calculator.fee(batch, FeeType.SERVICE, target)
    delivery_fee = calculator.fee(batch, FeeType.DELIVERY, target)
    found = calculator.found_subtotal(batch, target)
    return BatchSummary(
        target=str(target),
        is_multi_shop=batch.is_multi_shop,
        item_count=len(items),
        found_count=sum(1 for item in items if item.found),
        original_subtotal=calculator.original_subtotal(batch, target),
        found_subtotal=found,
        refund=calculator.refund_amount(batch, target),
        service_fee=service_fee,
        delivery_fee=delivery_fee,
        total=calculator.money(found + service_fee + delivery_fee),
        shops=tuple(shop_totals(batch, sub) for sub in batch.scope(target)),
    )
