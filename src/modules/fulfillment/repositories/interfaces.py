"""Batch repository interface.

Extends ``IRepository[OrderAggregate]`` with the writes a transition
needs: status history, outbox events and row locks.

The Service Layer and the payment coordinator depend exclusively on this
contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository
from modules.fulfillment.aggregate import OrderAggregate
from modules.fulfillment.state_machine import Transition
from shared.domain.events import DomainEvent


class IBatchRepository(IRepository[OrderAggregate]):
    """Repository contract for the batch aggregate root.

    A batch includes its sub-orders, their items and status history.
    Mutations must be atomic.
    """

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> OrderAggregate:
        """Create a batch with its sub-orders and items atomically.

        ``data`` keys: ``shopper_id``, ``customer_id``,
        ``delivery_address_id`` and ``sub_orders`` (first one is the
        primary), each with ``shop_id``, ``kind``, fees and ``items``.
        """

    @abstractmethod
    def get_by_id(self, id: Any) -> Optional[OrderAggregate]:
        """Retrieve a batch with its sub-orders and items."""

    @abstractmethod
    def get_for_update(self, id: Any) -> Optional[OrderAggregate]:
        """Retrieve a batch, locking its sub-order rows."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[OrderAggregate]:
        """List batches with optional filters (``shopper_id``, ``status``, ``shop_id``)."""

    @abstractmethod
    def save(self, entity: OrderAggregate) -> OrderAggregate:
        """Write sub-order statuses, proof flags and item evaluations."""

    @abstractmethod
    def record(
        self,
        entity: OrderAggregate,
        transitions: Iterable[Transition] = (),
        events: Iterable[DomainEvent] = (),
        notes: str = "",
    ) -> OrderAggregate:
        """Save ``entity``, append history for ``transitions`` and queue ``events``."""

    @abstractmethod
    def add_history(
        self,
        sub_order_id: UUID,
        old_status: Optional[str],
        new_status: str,
        notes: str = "",
    ) -> None:
        """Record a status change in the sub-order's audit trail."""
