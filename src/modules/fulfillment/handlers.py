"""Event handlers for Fulfillment domain events."""

from __future__ import annotations

import structlog

from modules.fulfillment.events import ItemFoundStatusChanged, ProofRecorded, SubOrderStatusChanged
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class SubOrderStatusChangedHandler(IEventHandler[SubOrderStatusChanged]):
    def handle(self, event: SubOrderStatusChanged) -> None:
        logger.info(
            "batch.status_changed",
            batch_id=str(event.aggregate_id),
            sub_order_id=str(event.sub_order_id),
            old_status=event.old_status,
            new_status=event.new_status,
        )


class ItemFoundStatusChangedHandler(IEventHandler[ItemFoundStatusChanged]):
    def handle(self, event: ItemFoundStatusChanged) -> None:
        logger.debug(
            "batch.item_status_changed",
            batch_id=str(event.aggregate_id),
            item_id=str(event.item_id),
            found=event.found,
        )


class ProofRecordedHandler(IEventHandler[ProofRecorded]):
    def handle(self, event: ProofRecorded) -> None:
        logger.info(
            "proof.recorded_published",
            batch_id=str(event.aggregate_id),
            sub_order_id=str(event.sub_order_id),
        )


sub_order_status_changed_handler = SubOrderStatusChangedHandler()
item_found_status_changed_handler = ItemFoundStatusChangedHandler()
proof_recorded_handler = ProofRecordedHandler()
