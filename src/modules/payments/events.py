"""Domain events for the Payments bounded context.

``aggregate_id`` is always the batch id so payment events sit next to
the fulfillment events of the same batch in the outbox.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from uuid import UUID

from shared.domain.events import DomainEvent


@dataclass(frozen=True, kw_only=True)
class PaymentSessionStarted(DomainEvent):
    sub_order_id: UUID
    session_id: UUID
    amount: Decimal


@dataclass(frozen=True, kw_only=True)
class TransferInitiated(DomainEvent):
    sub_order_id: UUID
    session_id: UUID
    reference_id: str


@dataclass(frozen=True, kw_only=True)
class PaymentSettled(DomainEvent):
    """Raised once per session when the wallet debit is committed."""

    sub_order_id: UUID
    session_id: UUID
    amount: Decimal
    transaction_id: UUID
    refund_id: Optional[UUID] = None


@dataclass(frozen=True, kw_only=True)
class RefundScheduled(DomainEvent):
    sub_order_id: UUID
    refund_id: UUID
    amount: Decimal


@dataclass(frozen=True, kw_only=True)
class PaymentAborted(DomainEvent):
    sub_order_id: UUID
    session_id: UUID
    state: str
    reason: str = ""
