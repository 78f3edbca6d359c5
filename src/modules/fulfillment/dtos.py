"""Batch DTOs for the API layer.

Immutable Pydantic v2 models built from the pure aggregate and the
router's summaries.  Views dump them with ``model_dump(mode="json")``.

- ``ToggleItemDTO``: input for marking an item found / not found.
- ``ItemOutputDTO``, ``SubOrderOutputDTO``: aggregate parts.
- ``BatchOutputDTO``: aggregate + derived phase + active shop.
- ``BatchSummaryDTO``: totals for the current view.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

from modules.fulfillment import calculator, router, state_machine
from modules.fulfillment.aggregate import Item, OrderAggregate, SubOrder, is_reel
from modules.fulfillment.router import BatchSummary, ShopTotals

# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class ToggleItemDTO(BaseModel):
    """``found_quantity`` is optional; omitted means the ordered quantity."""

    model_config = ConfigDict(frozen=True)

    item_id: UUID
    found: bool
    found_quantity: Optional[Decimal] = None

    @field_validator("found_quantity")
    @classmethod
    def quantity_only_when_found(
        cls, v: Optional[Decimal], info: ValidationInfo
    ) -> Optional[Decimal]:
        if v is not None and info.data.get("found") is False:
            return None
        return v


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class ItemOutputDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    sub_order_id: UUID
    product_id: str
    product_name: str
    ordered_quantity: Decimal
    unit_price: Decimal
    found: Optional[bool]
    found_quantity: Optional[Decimal]
    line_total: Decimal
    refund: Decimal

    @classmethod
    def from_entity(cls, item: Item) -> ItemOutputDTO:
        return cls(
            id=item.id,
            sub_order_id=item.sub_order_id,
            product_id=item.product_id,
            product_name=item.product_name,
            ordered_quantity=item.ordered_quantity,
            unit_price=item.unit_price,
            found=item.found,
            found_quantity=item.found_quantity,
            line_total=calculator.line_total(item),
            refund=calculator.refund_for_item(item),
        )


class SubOrderOutputDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    shop_id: str
    kind: str
    is_primary: bool
    status: str
    has_proof: bool
    allowed_transitions: List[str]
    reel_id: Optional[str] = None
    service_fee: Decimal
    delivery_fee: Decimal
    original_subtotal: Decimal
    found_subtotal: Decimal
    items: List[ItemOutputDTO]

    @classmethod
    def from_entity(cls, batch: OrderAggregate, sub: SubOrder) -> SubOrderOutputDTO:
        return cls(
            id=sub.id,
            shop_id=sub.shop_id,
            kind=sub.kind.code,
            is_primary=sub.is_primary,
            status=sub.status,
            has_proof=sub.has_proof,
            allowed_transitions=sorted(state_machine.allowed_transitions(sub)),
            reel_id=sub.kind.reel_id if is_reel(sub.kind) else None,
            service_fee=sub.service_fee,
            delivery_fee=sub.delivery_fee,
            original_subtotal=calculator.original_subtotal(batch, sub.id),
            found_subtotal=calculator.found_subtotal(batch, sub.id),
            items=[ItemOutputDTO.from_entity(item) for item in batch.items_for(sub.id)],
        )


class BatchOutputDTO(BaseModel):
    """Batch as seen from one shop.

    ``active_shop_id`` is the shop the router picked (or the one asked
    for); ``sub_orders`` always lists every shop of the batch.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID
    customer_id: str
    delivery_address_id: str
    phase: str
    is_multi_shop: bool
    active_shop_id: str
    sub_orders: List[SubOrderOutputDTO]

    @classmethod
    def from_entity(cls, batch: OrderAggregate, shop_id: Optional[str] = None) -> BatchOutputDTO:
        return cls(
            id=batch.id,
            customer_id=batch.customer_id,
            delivery_address_id=batch.delivery_address_id,
            phase=state_machine.derive_phase(batch),
            is_multi_shop=batch.is_multi_shop,
            active_shop_id=router.resolve(batch, shop_id).shop_id,
            sub_orders=[SubOrderOutputDTO.from_entity(batch, sub) for sub in batch.sub_orders],
        )


class ShopTotalsDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    sub_order_id: UUID
    shop_id: str
    status: str
    original_subtotal: Decimal
    found_subtotal: Decimal
    refund: Decimal
    service_fee: Decimal
    delivery_fee: Decimal

    @classmethod
    def from_entity(cls, totals: ShopTotals) -> ShopTotalsDTO:
        return cls(**vars(totals))


class BatchSummaryDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: str
    is_multi_shop: bool
    item_count: int
    found_count: int
    original_subtotal: Decimal
    found_subtotal: Decimal
    refund: Decimal
    service_fee: Decimal
    delivery_fee: Decimal
    total: Decimal
    shops: List[ShopTotalsDTO]

    @classmethod
    def from_entity(cls, summary: BatchSummary) -> BatchSummaryDTO:
        data = vars(summary).copy()
        data["shops"] = [ShopTotalsDTO.from_entity(shop) for shop in summary.shops]
        return cls(**data)
