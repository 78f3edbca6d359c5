"""Batch service layer (Use Cases).

Loads the batch aggregate, runs one state-machine or proof-gate
operation on it and persists the result.  All write operations are
atomic: the service defines the unit-of-work boundary and locks the
batch's sub-order rows before validating anything.

The payment-gated transition is not here; it belongs to
``modules.payments.services.PaymentService``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

import structlog
from django.db import transaction

from modules.fulfillment import calculator, router, state_machine
from modules.fulfillment.aggregate import OrderAggregate
from modules.fulfillment.exceptions import BatchNotFound, ProofRequired
from modules.fulfillment.proof_gate import ProofGate, ProofResult
from modules.fulfillment.state_machine import ToggleResult, TransitionResult
from modules.payments.exceptions import ConcurrentSessionConflict

if TYPE_CHECKING:
    from modules.fulfillment.repositories.interfaces import IBatchRepository
    from modules.payments.interfaces import IWalletService
    from modules.payments.repositories.interfaces import IPaymentSessionRepository

logger = structlog.get_logger(__name__)


class BatchService:
    """Application service for shopper batch use-cases.

    Receives repositories and collaborators via constructor injection (DIP).
    """

    def __init__(
        self,
        batch_repository: IBatchRepository,
        session_repository: IPaymentSessionRepository,
        wallet_service: IWalletService,
        proof_gate: ProofGate,
    ) -> None:
        self._batch_repo = batch_repository
        self._session_repo = session_repository
        self._wallet = wallet_service
        self._proof_gate = proof_gate

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_batch(self, batch_id: Any, shopper_id: Optional[int] = None) -> OrderAggregate:
        """Retrieve a batch assigned to ``shopper_id``.

        Raises:
            BatchNotFound: missing, or assigned to another shopper.
        """
        batch = self._batch_repo.get_by_id(batch_id)
        return self._owned(batch, batch_id, shopper_id)

    def list_batches(
        self, shopper_id: int, filters: Optional[Dict[str, Any]] = None
    ) -> List[OrderAggregate]:
        return self._batch_repo.list({**(filters or {}), "shopper_id": shopper_id})

    def summary(
        self, batch_id: Any, shopper_id: Optional[int] = None, shop_id: Optional[str] = None
    ) -> router.BatchSummary:
        batch = self.get_batch(batch_id, shopper_id)
        return router.summary(batch, router.display_target(batch, shop_id))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @transaction.atomic
    def start_shopping(
        self, batch_id: Any, sub_order_id: UUID, shopper_id: Optional[int] = None
    ) -> TransitionResult:
        """``accepted -> shopping`` and reserve the order value in the wallet.

        Raises:
            BatchNotFound, SubOrderNotFound, InvalidTransition.
        """
        batch = self._lock(batch_id, shopper_id)
        log = logger.bind(batch_id=str(batch.id), sub_order_id=str(sub_order_id))

        result = state_machine.start_shopping(batch, sub_order_id)
        self._wallet.reserve_for_shopping(
            batch.shopper_id,
            sub_order_id,
            calculator.original_subtotal(result.batch, sub_order_id),
            calculator.fees_total(result.batch, sub_order_id),
        )
        self._batch_repo.record(result.batch, result.transitions, result.events)

        log.info("batch.shopping_started", phase=state_machine.derive_phase(result.batch))
        return result

    @transaction.atomic
    def toggle_item(
        self,
        batch_id: Any,
        item_id: UUID,
        found: bool,
        quantity: Optional[Decimal] = None,
        shopper_id: Optional[int] = None,
    ) -> ToggleResult:
        """Mark an item found or not found.

        Raises:
            ItemNotFound, InvalidTransition.
            ConcurrentSessionConflict: a payment for the owning sub-order
                is in progress, so its amount is frozen.
        """
        batch = self._lock(batch_id, shopper_id)
        item = batch.item(item_id)
        active = self._session_repo.get_active_for_sub_order(item.sub_order_id)
        if active is not None:
            raise ConcurrentSessionConflict(
                "Items cannot change while a payment is in progress.",
                sub_order_id=item.sub_order_id,
                item_id=item.id,
            )

        result = state_machine.toggle_item(batch, item_id, found, quantity)
        self._batch_repo.record(result.batch, (), result.events)

        logger.info(
            "batch.item_toggled",
            batch_id=str(batch.id),
            item_id=str(item_id),
            found=found,
            effective_quantity=None if result.effective_quantity is None else str(result.effective_quantity),
            clamped=result.clamped,
        )
        return result

    @transaction.atomic
    def arrive(
        self, batch_id: Any, sub_order_id: UUID, shopper_id: Optional[int] = None
    ) -> TransitionResult:
        batch = self._lock(batch_id, shopper_id)
        result = state_machine.arrive_at_customer(batch, sub_order_id)
        self._batch_repo.record(result.batch, result.transitions, result.events)
        logger.info("batch.arrived", batch_id=str(batch.id), sub_order_id=str(sub_order_id))
        return result

    @transaction.atomic
    def record_proof(
        self,
        batch_id: Any,
        sub_order_id: UUID,
        image: bytes,
        shopper_id: Optional[int] = None,
    ) -> ProofResult:
        """Store proof of invoice for a sub-order on its way to the customer.

        Raises:
            InvalidTransition: the sub-order is not on the way yet.
            InvalidProofImage: empty, too large or not an image.
        """
        batch = self._lock(batch_id, shopper_id)
        result = self._proof_gate.record_proof(batch, sub_order_id, image)
        self._batch_repo.record(result.batch, (), result.events)
        return result

    @transaction.atomic
    def deliver(
        self, batch_id: Any, sub_order_id: UUID, shopper_id: Optional[int] = None
    ) -> TransitionResult:
        """Close a sub-order.

        Raises:
            ProofRequired: no proof of invoice recorded yet.
            InvalidTransition: the sub-order is not on the way.
        """
        batch = self._lock(batch_id, shopper_id)
        log = logger.bind(batch_id=str(batch.id), sub_order_id=str(sub_order_id))

        has_proof = self._proof_gate.has_proof(batch, sub_order_id)
        try:
            result = state_machine.mark_delivered(batch, sub_order_id, has_proof)
        except ProofRequired:
            log.warning("batch.delivery_blocked", reason="proof_required")
            raise
        self._batch_repo.record(result.batch, result.transitions, result.events)

        log.info("batch.delivered", phase=state_machine.derive_phase(result.batch))
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock(self, batch_id: Any, shopper_id: Optional[int]) -> OrderAggregate:
        return self._owned(self._batch_repo.get_for_update(batch_id), batch_id, shopper_id)

    @staticmethod
    def _owned(
        batch: Optional[OrderAggregate], batch_id: Any, shopper_id: Optional[int]
    ) -> OrderAggregate:
        if batch is None or (shopper_id is not None and batch.shopper_id != shopper_id):
            raise BatchNotFound(f"Batch {batch_id} not found.", batch_id=batch_id)
        return batch
