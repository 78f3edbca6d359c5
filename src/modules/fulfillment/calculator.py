"""Fee & Money Calculator.

Pure functions over an ``OrderAggregate`` and a target (a sub-order id or
``ALL``).  Sums run on unrounded ``Decimal`` values and are rounded to the
cent (half up) only when returned.

Reel orders are valued as ``unit_price × quantity`` for both the original
and the found subtotal.  Non-regular kinds have no per-item evaluation,
so their found subtotal always equals their original subtotal.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from modules.fulfillment.aggregate import (
    Item,
    OrderAggregate,
    SubOrder,
    Target,
    finds_items_individually,
    is_reel,
)
from modules.fulfillment.constants import CENT, FeeType

ZERO = Decimal("0")


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Per item
# ---------------------------------------------------------------------------


def missing_quantity(item: Item) -> Decimal:
    return max(ZERO, item.ordered_quantity - item.effective_found_quantity)


def refund_for_item(item: Item) -> Decimal:
    return money(missing_quantity(item) * item.unit_price)


def line_total(item: Item) -> Decimal:
    return money(item.ordered_quantity * item.unit_price)


def found_line_total(item: Item) -> Decimal:
    return money(item.effective_found_quantity * item.unit_price)


# ---------------------------------------------------------------------------
# Per sub-order (unrounded)
# ---------------------------------------------------------------------------


def _original(batch: OrderAggregate, sub: SubOrder) -> Decimal:
    if is_reel(sub.kind):
        return sub.kind.unit_price * sub.kind.quantity  # type: ignore[union-attr]
    return sum(
        (item.unit_price * item.ordered_quantity for item in batch.items_for(sub.id)),
        ZERO,
    )


def _found(batch: OrderAggregate, sub: SubOrder) -> Decimal:
    if not finds_items_individually(sub.kind):
        return _original(batch, sub)
    return sum(
        (
            item.unit_price * item.found_quantity
            for item in batch.items_for(sub.id)
            if item.found
        ),
        ZERO,
    )


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def original_subtotal(batch: OrderAggregate, target: Target) -> Decimal:
    """Value of everything ordered within ``target``."""
    return money(_sum(_original(batch, sub) for sub in batch.scope(target)))


def found_subtotal(batch: OrderAggregate, target: Target) -> Decimal:
    """Value of found items within ``target``.

    Unmarked and not-found items contribute nothing.
    """
    return money(_sum(_found(batch, sub) for sub in batch.scope(target)))


def refund_amount(batch: OrderAggregate, target: Target) -> Decimal:
    """Shortfall owed back to the customer: ``original - found``."""
    shortfall = _sum(
        _original(batch, sub) - _found(batch, sub) for sub in batch.scope(target)
    )
    return money(max(ZERO, shortfall))


def fee(batch: OrderAggregate, fee_type: str, target: Target) -> Decimal:
    """A sub-order's own fee, or the sum over every sub-order for ``ALL``.

    Each sub-order appears once in the scope, so no fee is counted twice.
    """
    if fee_type == FeeType.SERVICE:
        values = (sub.service_fee for sub in batch.scope(target))
    elif fee_type == FeeType.DELIVERY:
        values = (sub.delivery_fee for sub in batch.scope(target))
    else:
        raise ValueError(f"Unknown fee type: {fee_type}")
    return money(_sum(values))


def fees_total(batch: OrderAggregate, target: Target) -> Decimal:
    return money(
        fee(batch, FeeType.SERVICE, target) + fee(batch, FeeType.DELIVERY, target)
    )


def found_total(batch: OrderAggregate, target: Target) -> Decimal:
    """Found subtotal plus fees, what the customer ends up paying."""
    return money(found_subtotal(batch, target) + fees_total(batch, target))


def original_total(batch: OrderAggregate, target: Target) -> Decimal:
    return money(original_subtotal(batch, target) + fees_total(batch, target))
