"""Payment session repository interface."""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository
from modules.payments.session import PaymentSession
from shared.domain.events import DomainEvent


class IPaymentSessionRepository(IRepository[PaymentSession]):
    """Repository contract for payment sessions.

    At most one active session may exist per sub-order; ``add`` raises
    ``ConcurrentSessionConflict`` when a second one would be created.
    """

    @abstractmethod
    def add(self, entity: PaymentSession, events: Iterable[DomainEvent] = ()) -> PaymentSession:
        """Insert a new session."""

    @abstractmethod
    def get_by_id(self, id: Any) -> Optional[PaymentSession]: ...

    @abstractmethod
    def get_by_key(self, session_key: str) -> Optional[PaymentSession]: ...

    @abstractmethod
    def get_for_update(self, session_key: str) -> Optional[PaymentSession]:
        """Retrieve a session with a row-level lock."""

    @abstractmethod
    def get_active_for_sub_order(self, sub_order_id: UUID) -> Optional[PaymentSession]: ...

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[PaymentSession]: ...

    @abstractmethod
    def save(self, entity: PaymentSession, events: Iterable[DomainEvent] = ()) -> PaymentSession:
        """Update an existing session and queue ``events``."""

    @abstractmethod
    def is_cancel_requested(self, session_key: str) -> bool:
        """Latest committed cancellation flag (never cached)."""
