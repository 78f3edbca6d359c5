"""Domain events for the Fulfillment bounded context."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from shared.domain.events import DomainEvent


@dataclass(frozen=True, kw_only=True)
class SubOrderStatusChanged(DomainEvent):
    """Raised on every sub-order transition (``aggregate_id`` is the batch)."""

    sub_order_id: UUID
    old_status: str
    new_status: str


@dataclass(frozen=True, kw_only=True)
class ItemFoundStatusChanged(DomainEvent):
    """Raised when a shopper marks an item found or not found."""

    sub_order_id: UUID
    item_id: UUID
    found: bool
    found_quantity: str | None
    clamped: bool


@dataclass(frozen=True, kw_only=True)
class ProofRecorded(DomainEvent):
    """Raised when proof of invoice is stored for a sub-order."""

    sub_order_id: UUID
    proof_ref: str
