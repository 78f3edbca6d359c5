from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient

from modules.fulfillment.aggregate import Item, OrderAggregate, Regular, SubOrder
from modules.fulfillment.constants import SubOrderStatus
from modules.fulfillment.repositories.django_repository import BatchDjangoRepository
from modules.wallets.models import Wallet

User = get_user_model()


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _clear_cache():
    """Throttle counters and the MoMo token live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


# ---------------------------------------------------------------------------
# Pure aggregate builders
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_item():
    """Build an ``Item`` owned by ``sub_order_id``."""

    def _make(sub_order_id, name, unit_price, quantity="1", found=None, found_quantity=None):
        return Item(
            id=uuid4(),
            sub_order_id=sub_order_id,
            product_id=f"P-{name}",
            product_name=name,
            ordered_quantity=Decimal(quantity),
            unit_price=Decimal(unit_price),
            found=found,
            found_quantity=None if found_quantity is None else Decimal(found_quantity),
        )

    return _make


@pytest.fixture()
def make_sub_order(make_item):
    """Build a ``SubOrder``; ``lines`` are ``(name, unit_price, quantity)``."""

    def _make(
        shop_id="shop-x",
        *,
        lines=(),
        extra_items=(),
        kind=None,
        status=SubOrderStatus.ACCEPTED,
        service_fee="0",
        delivery_fee="0",
        has_proof=False,
    ):
        sub_order_id = uuid4()
        items = tuple(make_item(sub_order_id, *line) for line in lines)
        return SubOrder(
            id=sub_order_id,
            shop_id=shop_id,
            kind=kind or Regular(),
            status=status,
            items=items + tuple(extra_items),
            service_fee=Decimal(service_fee),
            delivery_fee=Decimal(delivery_fee),
            has_proof=has_proof,
        )

    return _make


@pytest.fixture()
def make_batch():
    """Build an ``OrderAggregate`` from a primary and combined sub-orders."""

    def _make(primary, *combined, shopper_id=7):
        return OrderAggregate(
            id=uuid4(),
            shopper_id=shopper_id,
            customer_id="customer-1",
            delivery_address_id="address-1",
            primary=replace(primary, is_primary=True),
            combined=tuple(combined),
        )

    return _make


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def shopper():
    return User.objects.create_user(username="shopper", password="shopper123")


@pytest.fixture()
def other_shopper():
    return User.objects.create_user(username="other-shopper", password="shopper123")


@pytest.fixture()
def wallet(shopper):
    return Wallet.objects.create(shopper=shopper)


@pytest.fixture()
def shopper_client(shopper):
    """APIClient force-authenticated as ``shopper``."""
    client = APIClient()
    client.force_authenticate(user=shopper)
    return client


@pytest.fixture()
def create_batch():
    """Persist a batch through the repository and return the aggregate."""

    def _create(shopper, sub_orders):
        return BatchDjangoRepository().create(
            {
                "shopper_id": shopper.pk,
                "customer_id": "customer-1",
                "delivery_address_id": "address-1",
                "sub_orders": sub_orders,
            }
        )

    return _create


@pytest.fixture()
def grocery_sub_order():
    """Two items: 2 x 1000 (Milk) and 1 x 500 (Bread)."""
    return {
        "shop_id": "shop-x",
        "kind": "regular",
        "service_fee": "300",
        "delivery_fee": "700",
        "items": [
            {"product_id": "P-milk", "product_name": "Milk", "quantity": "2", "unit_price": "1000"},
            {"product_id": "P-bread", "product_name": "Bread", "quantity": "1", "unit_price": "500"},
        ],
    }


@pytest.fixture()
def single_shop_batch(shopper, wallet, create_batch, grocery_sub_order):
    return create_batch(shopper, [grocery_sub_order])


@pytest.fixture()
def multi_shop_batch(shopper, wallet, create_batch, grocery_sub_order):
    return create_batch(
        shopper,
        [
            grocery_sub_order,
            {
                "shop_id": "shop-y",
                "kind": "reel_shop",
                "reel_id": "reel-1",
                "reel_unit_price": "1200",
                "reel_quantity": "1",
                "service_fee": "100",
                "delivery_fee": "200",
            },
        ],
    )


# ---------------------------------------------------------------------------
# Payment flow fixtures
# ---------------------------------------------------------------------------

OTP_CODE = "48213"


@pytest.fixture()
def batch_service():
    from modules.fulfillment.views import build_batch_service

    return build_batch_service()


@pytest.fixture()
def ready_to_pay(shopper, single_shop_batch, batch_service):
    """Shopping started; Milk found 1 of 2, Bread not found."""
    batch = single_shop_batch
    batch_service.start_shopping(batch.id, batch.primary.id, shopper.pk)
    items = {item.product_name: item for item in batch.items()}
    batch_service.toggle_item(batch.id, items["Milk"].id, True, Decimal("1"), shopper.pk)
    batch_service.toggle_item(batch.id, items["Bread"].id, False, None, shopper.pk)
    return BatchDjangoRepository().get_by_id(batch.id)


@pytest.fixture()
def fixed_otp():
    """Every issued code is ``OTP_CODE``."""
    with patch("modules.payments.coordinator.generate_otp", return_value=OTP_CODE):
        yield OTP_CODE
