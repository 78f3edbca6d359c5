"""Fulfillment constants.

Status choices, the sub-order transition table and the batch phases
derived from it.  Order kinds are persisted as short codes; the
matching typed variants live in ``modules.fulfillment.aggregate``.
"""

from decimal import Decimal

from django.db import models


class SubOrderStatus(models.TextChoices):
    ACCEPTED = "accepted", "Accepted"
    SHOPPING = "shopping", "Shopping"
    PAID = "paid", "Paid"
    ON_THE_WAY = "on_the_way", "On the way"
    AT_CUSTOMER = "at_customer", "At customer"
    DELIVERED = "delivered", "Delivered"


class BatchPhase(models.TextChoices):
    ACCEPTED = "accepted", "Accepted"
    SHOPPING = "shopping", "Shopping"
    DELIVERING = "delivering", "Delivering"
    DONE = "done", "Done"


class OrderKindCode(models.TextChoices):
    REGULAR = "regular", "Regular"
    REEL_FROM_SHOP = "reel_shop", "Reel (shop)"
    REEL_DIRECT = "reel_direct", "Reel (restaurant or user)"
    RESTAURANT = "restaurant", "Restaurant"


class FeeType(models.TextChoices):
    SERVICE = "service", "Service fee"
    DELIVERY = "delivery", "Delivery fee"


# ``paid`` is only ever held inside the settlement unit of work; it is
# recorded in history but never committed as a resting status.
VALID_TRANSITIONS: dict[str, set[str]] = {
    SubOrderStatus.ACCEPTED: {SubOrderStatus.SHOPPING, SubOrderStatus.PAID},
    SubOrderStatus.SHOPPING: {SubOrderStatus.PAID},
    SubOrderStatus.PAID: {SubOrderStatus.ON_THE_WAY},
    SubOrderStatus.ON_THE_WAY: {SubOrderStatus.AT_CUSTOMER, SubOrderStatus.DELIVERED},
    SubOrderStatus.AT_CUSTOMER: {SubOrderStatus.DELIVERED},
    SubOrderStatus.DELIVERED: set(),
}

PRE_DELIVERY_STATES: set[str] = {
    SubOrderStatus.ACCEPTED,
    SubOrderStatus.SHOPPING,
    SubOrderStatus.PAID,
}

DELIVERY_STATES: set[str] = {
    SubOrderStatus.ON_THE_WAY,
    SubOrderStatus.AT_CUSTOMER,
    SubOrderStatus.DELIVERED,
}

SHOPPING_STATES: set[str] = {SubOrderStatus.SHOPPING, SubOrderStatus.PAID}

TERMINAL_STATES: set[str] = {SubOrderStatus.DELIVERED}

# Selector meaning "every sub-order in the batch".
ALL = "all"

CENT = Decimal("0.01")
