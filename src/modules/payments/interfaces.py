"""Collaborator contracts consumed by the payment coordinator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID


@dataclass(frozen=True)
class RefundRequest:
    """Shortfall owed to the customer, scheduled inside settlement."""

    amount: Decimal
    customer_id: str
    batch_id: UUID
    sub_order_id: UUID
    reason: str
    idempotency_key: str


@dataclass(frozen=True)
class SettlementRecord:
    transaction_id: UUID
    debit: Decimal
    refund_id: Optional[UUID] = None
    refund_amount: Decimal = Decimal("0.00")
    replayed: bool = False


class IWalletService(ABC):
    @abstractmethod
    def get_reserved_balance(self, shopper_id: Any) -> Decimal: ...

    @abstractmethod
    def reserve_for_shopping(
        self, shopper_id: Any, sub_order_id: UUID, amount: Decimal, earnings: Decimal
    ) -> Any:
        """Reserve ``amount`` and credit ``earnings`` once per sub-order."""

    @abstractmethod
    def settle(
        self,
        shopper_id: Any,
        debit: Decimal,
        scheduled_refund: Optional[RefundRequest],
        idempotency_key: str,
        description: str = "",
        sub_order_id: Optional[UUID] = None,
    ) -> SettlementRecord:
        """Debit the reserved balance and schedule the refund as one unit.

        Replaying the same ``idempotency_key`` returns the first record.
        """


class IMobileMoneyGateway(ABC):
    @abstractmethod
    def initiate_transfer(
        self, amount: Decimal, currency: str, payer_code: str, external_id: str
    ) -> str:
        """Start a transfer and return the provider's reference id."""

    @abstractmethod
    def get_transfer_status(self, reference_id: str) -> str:
        """``PENDING``, ``SUCCESSFUL`` or ``FAILED``."""


class IOtpChannel(ABC):
    @abstractmethod
    def deliver(self, code: str, context: Dict[str, Any]) -> None:
        """Hand the code to the operator.  Nothing is returned."""
