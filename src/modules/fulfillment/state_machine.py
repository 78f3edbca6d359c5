"""Fulfillment State Machine.

Transition functions take an ``OrderAggregate`` and return a
``TransitionResult`` holding the new aggregate, the status changes that
were applied and the domain events they raise.  A rejected transition
raises before anything is built, so the caller's aggregate is never
half-updated.

Sub-order lifecycle::

    accepted -> shopping -> (paid) -> on_the_way -> at_customer -> delivered

Sub-orders without a shopping step (restaurant, reel sourced directly)
go from ``accepted`` straight to the payment-gated transition.  ``paid``
is internal: ``commit_payment`` applies ``-> paid -> on_the_way`` in one
call and is only invoked by the payment coordinator after settlement.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional, Set, Tuple
from uuid import UUID

from modules.fulfillment.aggregate import (
    Item,
    OrderAggregate,
    SubOrder,
    finds_items_individually,
)
from modules.fulfillment.constants import (
    DELIVERY_STATES,
    SHOPPING_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    BatchPhase,
    SubOrderStatus,
)
from modules.fulfillment.events import ItemFoundStatusChanged, SubOrderStatusChanged
from modules.fulfillment.exceptions import InvalidTransition, ProofRequired
from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class Transition:
    sub_order_id: UUID
    old_status: str
    new_status: str


@dataclass(frozen=True)
class TransitionResult:
    batch: OrderAggregate
    transitions: Tuple[Transition, ...]
    events: Tuple[DomainEvent, ...]

    @property
    def final_status(self) -> str:
        return self.transitions[-1].new_status


@dataclass(frozen=True)
class ToggleResult:
    """Outcome of a found/not-found toggle.

    ``effective_quantity`` is the quantity actually stored (``None`` when
    the item is not found); ``clamped`` reports that the requested value
    was out of range and was replaced by the ordered quantity.
    """

    batch: OrderAggregate
    item: Item
    effective_quantity: Optional[Decimal]
    clamped: bool
    events: Tuple[DomainEvent, ...]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def derive_phase(batch: OrderAggregate) -> str:
    """Batch phase from the current sub-order statuses (never cached)."""
    statuses = [sub.status for sub in batch.sub_orders]
    if all(status in TERMINAL_STATES for status in statuses):
        return BatchPhase.DONE
    if all(status in DELIVERY_STATES for status in statuses):
        return BatchPhase.DELIVERING
    if any(status in SHOPPING_STATES for status in statuses):
        return BatchPhase.SHOPPING
    return BatchPhase.ACCEPTED


def allowed_transitions(sub: SubOrder) -> Set[str]:
    allowed = set(VALID_TRANSITIONS[sub.status])
    if sub.status == SubOrderStatus.ACCEPTED:
        if sub.has_shopping_step:
            allowed.discard(SubOrderStatus.PAID)
        else:
            allowed.discard(SubOrderStatus.SHOPPING)
    return allowed


def can_proceed_to_delivery(batch: OrderAggregate, sub_order_id: UUID) -> bool:
    try:
        ensure_can_proceed_to_delivery(batch, sub_order_id)
    except InvalidTransition:
        return False
    return True


def ensure_can_proceed_to_delivery(batch: OrderAggregate, sub_order_id: UUID) -> SubOrder:
    """Guard of the payment-gated transition towards ``on_the_way``.

    Regular orders need at least one found item; other kinds carry a
    single implicit item and pass unconditionally.
    """
    sub = batch.sub_order(sub_order_id)
    if SubOrderStatus.PAID not in allowed_transitions(sub):
        raise InvalidTransition(
            f"Sub-order {sub.id} cannot proceed to delivery from '{sub.status}'.",
            sub_order_id=sub.id,
            current_status=sub.status,
            attempted_status=SubOrderStatus.ON_THE_WAY,
        )
    if finds_items_individually(sub.kind) and not any(
        item.found for item in batch.items_for(sub.id)
    ):
        raise InvalidTransition(
            f"Sub-order {sub.id} has no found items.",
            sub_order_id=sub.id,
            current_status=sub.status,
            attempted_status=SubOrderStatus.ON_THE_WAY,
            reason="no_found_items",
        )
    return sub


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def _step(
    batch: OrderAggregate, sub_order_id: UUID, new_status: str
) -> Tuple[OrderAggregate, Transition, DomainEvent]:
    sub = batch.sub_order(sub_order_id)
    if new_status not in allowed_transitions(sub):
        raise InvalidTransition(
            f"Cannot transition sub-order {sub.id} from '{sub.status}' to '{new_status}'.",
            sub_order_id=sub.id,
            current_status=sub.status,
            attempted_status=new_status,
        )
    transition = Transition(sub.id, sub.status, new_status)
    event = SubOrderStatusChanged(
        aggregate_id=batch.id,
        sub_order_id=sub.id,
        old_status=sub.status,
        new_status=new_status,
    )
    return batch.with_sub_order(replace(sub, status=new_status)), transition, event


def _run(batch: OrderAggregate, sub_order_id: UUID, *statuses: str) -> TransitionResult:
    transitions = []
    events = []
    for status in statuses:
        batch, transition, event = _step(batch, sub_order_id, status)
        transitions.append(transition)
        events.append(event)
    return TransitionResult(batch, tuple(transitions), tuple(events))


def start_shopping(batch: OrderAggregate, sub_order_id: UUID) -> TransitionResult:
    return _run(batch, sub_order_id, SubOrderStatus.SHOPPING)


def commit_payment(batch: OrderAggregate, sub_order_id: UUID) -> TransitionResult:
    """Apply ``-> paid -> on_the_way`` after a settled payment."""
    ensure_can_proceed_to_delivery(batch, sub_order_id)
    return _run(batch, sub_order_id, SubOrderStatus.PAID, SubOrderStatus.ON_THE_WAY)


def arrive_at_customer(batch: OrderAggregate, sub_order_id: UUID) -> TransitionResult:
    return _run(batch, sub_order_id, SubOrderStatus.AT_CUSTOMER)


def mark_delivered(
    batch: OrderAggregate, sub_order_id: UUID, has_proof: bool
) -> TransitionResult:
    """Close a sub-order.  ``has_proof`` comes from the proof gate."""
    sub = batch.sub_order(sub_order_id)
    if SubOrderStatus.DELIVERED not in allowed_transitions(sub):
        raise InvalidTransition(
            f"Cannot deliver sub-order {sub.id} from '{sub.status}'.",
            sub_order_id=sub.id,
            current_status=sub.status,
            attempted_status=SubOrderStatus.DELIVERED,
        )
    if not has_proof:
        raise ProofRequired(
            f"Sub-order {sub.id} needs proof of invoice before delivery.",
            sub_order_id=sub.id,
            current_status=sub.status,
            attempted_status=SubOrderStatus.DELIVERED,
        )
    return _run(batch, sub_order_id, SubOrderStatus.DELIVERED)


# ---------------------------------------------------------------------------
# Item evaluation
# ---------------------------------------------------------------------------


def toggle_item(
    batch: OrderAggregate,
    item_id: UUID,
    found: bool,
    quantity: Optional[Decimal] = None,
) -> ToggleResult:
    """Mark an item found (with a quantity) or not found.

    Only legal while the owning sub-order is shopping.  A missing quantity
    means the full ordered quantity; an out-of-range one is clamped to the
    ordered quantity and reported through ``clamped``.
    """
    item = batch.item(item_id)
    owner = batch.sub_order(item.sub_order_id)
    if owner.status != SubOrderStatus.SHOPPING:
        raise InvalidTransition(
            f"Items of sub-order {owner.id} can only be evaluated while shopping.",
            sub_order_id=owner.id,
            item_id=item.id,
            current_status=owner.status,
        )

    clamped = False
    effective: Optional[Decimal] = None
    if found:
        if quantity is None:
            effective = item.ordered_quantity
        elif Decimal("0") <= quantity <= item.ordered_quantity:
            effective = quantity
        else:
            effective = item.ordered_quantity
            clamped = True

    updated = replace(item, found=found, found_quantity=effective)
    event = ItemFoundStatusChanged(
        aggregate_id=batch.id,
        sub_order_id=owner.id,
        item_id=item.id,
        found=found,
        found_quantity=None if effective is None else str(effective),
        clamped=clamped,
    )
    return ToggleResult(batch.with_item(updated), updated, effective, clamped, (event,))
