"""Invoice/Proof Gate.

Proof can only be recorded once a sub-order is on its way; the state
machine asks the gate before allowing ``delivered``.  The gate never
drives a transition itself.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Tuple
from uuid import UUID

import structlog

from modules.fulfillment.aggregate import OrderAggregate
from modules.fulfillment.constants import SubOrderStatus
from modules.fulfillment.events import ProofRecorded
from modules.fulfillment.exceptions import InvalidProofImage, InvalidTransition
from modules.fulfillment.interfaces import IProofStorage
from shared.domain.events import DomainEvent

logger = structlog.get_logger(__name__)

RECORDABLE_STATES = {SubOrderStatus.ON_THE_WAY, SubOrderStatus.AT_CUSTOMER}

_IMAGE_SIGNATURES = (
    b"\xff\xd8\xff",  # JPEG
    b"\x89PNG\r\n\x1a\n",
    b"GIF87a",
    b"GIF89a",
)


@dataclass(frozen=True)
class ProofResult:
    batch: OrderAggregate
    proof_ref: str
    events: Tuple[DomainEvent, ...]


def looks_like_image(data: bytes) -> bool:
    if data.startswith(_IMAGE_SIGNATURES):
        return True
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


class ProofGate:
    def __init__(self, storage: IProofStorage, max_bytes: Optional[int] = None) -> None:
        self._storage = storage
        self._max_bytes = max_bytes

    def has_proof(self, batch: OrderAggregate, sub_order_id: UUID) -> bool:
        sub = batch.sub_order(sub_order_id)
        if sub.status not in RECORDABLE_STATES | {SubOrderStatus.DELIVERED}:
            return False
        return sub.has_proof or self._storage.has_proof(sub.id)

    def record_proof(
        self, batch: OrderAggregate, sub_order_id: UUID, image: bytes
    ) -> ProofResult:
        sub = batch.sub_order(sub_order_id)
        if sub.status not in RECORDABLE_STATES:
            raise InvalidTransition(
                f"Proof for sub-order {sub.id} can only be recorded on the way to the customer.",
                sub_order_id=sub.id,
                current_status=sub.status,
            )
        self._validate(sub.id, image)

        proof_ref = self._storage.store(sub.id, image)
        logger.info(
            "proof.recorded",
            batch_id=str(batch.id),
            sub_order_id=str(sub.id),
            size=len(image),
        )
        event = ProofRecorded(aggregate_id=batch.id, sub_order_id=sub.id, proof_ref=proof_ref)
        return ProofResult(
            batch.with_sub_order(replace(sub, has_proof=True)), proof_ref, (event,)
        )

    def _validate(self, sub_order_id: UUID, image: bytes) -> None:
        if not image:
            raise InvalidProofImage("Proof image is empty.", sub_order_id=sub_order_id)
        if self._max_bytes is not None and len(image) > self._max_bytes:
            raise InvalidProofImage(
                "Proof image is too large.",
                sub_order_id=sub_order_id,
                size=len(image),
                max_bytes=self._max_bytes,
            )
        if not looks_like_image(image):
            raise InvalidProofImage(
                "Proof must be a JPEG, PNG, GIF or WEBP image.", sub_order_id=sub_order_id
            )
