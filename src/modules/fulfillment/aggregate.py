"""Order Aggregate: one shopper trip.

A batch is a primary sub-order plus zero or more combined sub-orders,
one per shop.  Everything here is an immutable value; transitions in
``modules.fulfillment.state_machine`` return new aggregates instead of
mutating these.

Order kinds are a tagged variant.  Each variant carries the fields it
needs, so callers branch on the type instead of probing optional
attributes:

- ``Regular``: multi-item shop order, items are found one by one.
- ``ReelFromShop``: single-product quick buy fulfilled at a shop.
- ``ReelFromRestaurantOrUser``: quick buy sourced directly, no shopping step.
- ``Restaurant``: restaurant order, no shopping step.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import ClassVar, Dict, Optional, Tuple, Union
from uuid import UUID

from modules.fulfillment.constants import ALL, OrderKindCode, SubOrderStatus
from modules.fulfillment.exceptions import ItemNotFound, SubOrderNotFound

# ---------------------------------------------------------------------------
# Order kinds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Regular:
    code: ClassVar[str] = OrderKindCode.REGULAR
    has_shopping_step: ClassVar[bool] = True


@dataclass(frozen=True)
class ReelFromShop:
    code: ClassVar[str] = OrderKindCode.REEL_FROM_SHOP
    has_shopping_step: ClassVar[bool] = True

    reel_id: str
    unit_price: Decimal
    quantity: Decimal

    def __post_init__(self) -> None:
        _check_reel_line(self.unit_price, self.quantity)


@dataclass(frozen=True)
class ReelFromRestaurantOrUser:
    code: ClassVar[str] = OrderKindCode.REEL_DIRECT
    has_shopping_step: ClassVar[bool] = False

    reel_id: str
    unit_price: Decimal
    quantity: Decimal
    origin_id: str

    def __post_init__(self) -> None:
        _check_reel_line(self.unit_price, self.quantity)


@dataclass(frozen=True)
class Restaurant:
    code: ClassVar[str] = OrderKindCode.RESTAURANT
    has_shopping_step: ClassVar[bool] = False

    restaurant_id: str


OrderKind = Union[Regular, ReelFromShop, ReelFromRestaurantOrUser, Restaurant]
ReelKind = Union[ReelFromShop, ReelFromRestaurantOrUser]


def _check_reel_line(unit_price: Decimal, quantity: Decimal) -> None:
    if unit_price < 0:
        raise ValueError("Reel unit price cannot be negative.")
    if quantity <= 0:
        raise ValueError("Reel quantity must be positive.")


def is_reel(kind: OrderKind) -> bool:
    return isinstance(kind, (ReelFromShop, ReelFromRestaurantOrUser))


def finds_items_individually(kind: OrderKind) -> bool:
    """Only regular orders have per-item found/not-found evaluation."""
    return isinstance(kind, Regular)


# ---------------------------------------------------------------------------
# Items and sub-orders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Item:
    """One line of a sub-order.

    ``found`` is tri-state: ``None`` (not yet evaluated), ``True`` or
    ``False``.  ``found_quantity`` is only defined when ``found`` is
    ``True``.  ``sub_order_id`` is fixed at creation.
    """

    id: UUID
    sub_order_id: UUID
    product_id: str
    product_name: str
    ordered_quantity: Decimal
    unit_price: Decimal
    found: Optional[bool] = None
    found_quantity: Optional[Decimal] = None

    def __post_init__(self) -> None:
        if self.ordered_quantity <= 0:
            raise ValueError("Ordered quantity must be positive.")
        if self.unit_price < 0:
            raise ValueError("Unit price cannot be negative.")
        if self.found is True:
            if self.found_quantity is None:
                raise ValueError("A found item needs a found quantity.")
            if not Decimal("0") <= self.found_quantity <= self.ordered_quantity:
                raise ValueError("Found quantity must be within [0, ordered].")
        elif self.found_quantity is not None:
            raise ValueError("Found quantity is only defined for found items.")

    @property
    def is_evaluated(self) -> bool:
        return self.found is not None

    @property
    def effective_found_quantity(self) -> Decimal:
        return self.found_quantity if self.found else Decimal("0")


@dataclass(frozen=True)
class SubOrder:
    """A primary or combined order: one shop, its items, fees and status."""

    id: UUID
    shop_id: str
    kind: OrderKind
    status: str = SubOrderStatus.ACCEPTED
    items: Tuple[Item, ...] = ()
    service_fee: Decimal = Decimal("0")
    delivery_fee: Decimal = Decimal("0")
    has_proof: bool = False
    is_primary: bool = False

    @property
    def has_shopping_step(self) -> bool:
        return self.kind.has_shopping_step


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------

Target = Union[UUID, str]


@dataclass(frozen=True)
class OrderAggregate:
    """One logical batch: primary sub-order + ordered combined sub-orders."""

    id: UUID
    shopper_id: int
    customer_id: str
    delivery_address_id: str
    primary: SubOrder
    combined: Tuple[SubOrder, ...] = ()

    def __post_init__(self) -> None:
        ids = [sub.id for sub in self.sub_orders]
        if len(ids) != len(set(ids)):
            raise ValueError("Sub-order ids must be unique within a batch.")
        shops = [sub.shop_id for sub in self.sub_orders]
        if len(shops) != len(set(shops)):
            raise ValueError("A batch holds exactly one sub-order per shop.")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def sub_orders(self) -> Tuple[SubOrder, ...]:
        return (self.primary, *self.combined)

    @property
    def is_multi_shop(self) -> bool:
        return len({sub.shop_id for sub in self.sub_orders}) > 1

    def sub_order(self, sub_order_id: UUID) -> SubOrder:
        for sub in self.sub_orders:
            if sub.id == sub_order_id:
                return sub
        raise SubOrderNotFound(
            f"Sub-order {sub_order_id} is not part of batch {self.id}.",
            batch_id=self.id,
            sub_order_id=sub_order_id,
        )

    def sub_order_for_shop(self, shop_id: str) -> SubOrder:
        for sub in self.sub_orders:
            if sub.shop_id == shop_id:
                return sub
        raise SubOrderNotFound(
            f"Shop {shop_id} is not part of batch {self.id}.",
            batch_id=self.id,
            shop_id=shop_id,
        )

    def scope(self, target: Target) -> Tuple[SubOrder, ...]:
        """Sub-orders covered by ``target`` (one id, or ``ALL``)."""
        if target == ALL:
            return self.sub_orders
        return (self.sub_order(target),)  # type: ignore[arg-type]

    def items(self) -> Tuple[Item, ...]:
        """Every item once, in sub-order order, de-duplicated by item id."""
        seen: Dict[UUID, Item] = {}
        for sub in self.sub_orders:
            for item in sub.items:
                seen.setdefault(item.id, item)
        return tuple(seen.values())

    def items_for(self, target: Target) -> Tuple[Item, ...]:
        """De-duplicated items owned by the sub-orders in ``target``."""
        owners = {sub.id for sub in self.scope(target)}
        return tuple(item for item in self.items() if item.sub_order_id in owners)

    def item(self, item_id: UUID) -> Item:
        for item in self.items():
            if item.id == item_id:
                return item
        raise ItemNotFound(
            f"Item {item_id} is not part of batch {self.id}.",
            batch_id=self.id,
            item_id=item_id,
        )

    # ------------------------------------------------------------------
    # Copy-on-write helpers
    # ------------------------------------------------------------------

    def with_sub_order(self, updated: SubOrder) -> OrderAggregate:
        self.sub_order(updated.id)
        if updated.id == self.primary.id:
            return replace(self, primary=updated)
        return replace(
            self,
            combined=tuple(updated if sub.id == updated.id else sub for sub in self.combined),
        )

    def with_item(self, updated: Item) -> OrderAggregate:
        """Replace every copy of ``updated.id`` across all sub-order lists."""
        result = self
        for sub in self.sub_orders:
            if any(item.id == updated.id for item in sub.items):
                items = tuple(updated if item.id == updated.id else item for item in sub.items)
                result = result.with_sub_order(replace(sub, items=items))
        return result
