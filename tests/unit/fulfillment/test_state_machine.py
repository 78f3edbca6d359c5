"""Unit tests for the fulfillment state machine."""

from __future__ import annotations

from decimal import Decimal

import pytest

from modules.fulfillment import state_machine
from modules.fulfillment.aggregate import ReelFromRestaurantOrUser, ReelFromShop, Restaurant
from modules.fulfillment.constants import BatchPhase, SubOrderStatus
from modules.fulfillment.events import ItemFoundStatusChanged, SubOrderStatusChanged
from modules.fulfillment.exceptions import (
    InvalidTransition,
    ItemNotFound,
    ProofRequired,
    SubOrderNotFound,
)

pytestmark = pytest.mark.unit

S = SubOrderStatus


@pytest.fixture()
def grocery(make_sub_order, make_batch):
    sub = make_sub_order(lines=[("A", "1000", "2"), ("B", "500", "1")])
    return make_batch(sub)


def _shopping(batch):
    return state_machine.start_shopping(batch, batch.primary.id).batch


# ---------------------------------------------------------------------------
# Derived phase
# ---------------------------------------------------------------------------


class TestDerivePhase:
    @pytest.mark.parametrize(
        ("statuses", "expected"),
        [
            ((S.ACCEPTED,), BatchPhase.ACCEPTED),
            ((S.ACCEPTED, S.ACCEPTED), BatchPhase.ACCEPTED),
            ((S.SHOPPING,), BatchPhase.SHOPPING),
            ((S.DELIVERED, S.SHOPPING), BatchPhase.SHOPPING),
            ((S.ON_THE_WAY, S.ACCEPTED), BatchPhase.ACCEPTED),
            ((S.ON_THE_WAY, S.DELIVERED), BatchPhase.DELIVERING),
            ((S.AT_CUSTOMER, S.ON_THE_WAY), BatchPhase.DELIVERING),
            ((S.DELIVERED, S.DELIVERED), BatchPhase.DONE),
        ],
    )
    def test_phase_from_statuses(self, make_sub_order, make_batch, statuses, expected):
        subs = [
            make_sub_order(f"shop-{index}", status=status)
            for index, status in enumerate(statuses)
        ]
        batch = make_batch(subs[0], *subs[1:])

        assert state_machine.derive_phase(batch) == expected

    def test_phase_follows_every_transition(self, grocery):
        assert state_machine.derive_phase(grocery) == BatchPhase.ACCEPTED
        batch = _shopping(grocery)
        assert state_machine.derive_phase(batch) == BatchPhase.SHOPPING


# ---------------------------------------------------------------------------
# Allowed transitions
# ---------------------------------------------------------------------------


class TestAllowedTransitions:
    def test_regular_order_must_shop_first(self, make_sub_order):
        assert state_machine.allowed_transitions(make_sub_order()) == {S.SHOPPING}

    def test_reel_from_shop_must_shop_first(self, make_sub_order):
        sub = make_sub_order(kind=ReelFromShop("reel-1", Decimal("100"), Decimal("1")))
        assert state_machine.allowed_transitions(sub) == {S.SHOPPING}

    @pytest.mark.parametrize(
        "kind",
        [
            Restaurant("resto-1"),
            ReelFromRestaurantOrUser("reel-2", Decimal("100"), Decimal("1"), "user-1"),
        ],
    )
    def test_fast_path_kinds_skip_shopping(self, make_sub_order, kind):
        assert state_machine.allowed_transitions(make_sub_order(kind=kind)) == {S.PAID}

    def test_delivered_is_terminal(self, make_sub_order):
        assert state_machine.allowed_transitions(make_sub_order(status=S.DELIVERED)) == set()


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestStartShopping:
    def test_accepted_to_shopping(self, grocery):
        result = state_machine.start_shopping(grocery, grocery.primary.id)

        assert result.final_status == S.SHOPPING
        assert result.batch.primary.status == S.SHOPPING
        assert grocery.primary.status == S.ACCEPTED
        (event,) = result.events
        assert isinstance(event, SubOrderStatusChanged)
        assert event.aggregate_id == grocery.id
        assert (event.old_status, event.new_status) == (S.ACCEPTED, S.SHOPPING)

    def test_cannot_start_twice(self, grocery):
        batch = _shopping(grocery)

        with pytest.raises(InvalidTransition) as exc_info:
            state_machine.start_shopping(batch, batch.primary.id)

        assert exc_info.value.context["current_status"] == S.SHOPPING
        assert exc_info.value.context["attempted_status"] == S.SHOPPING

    def test_restaurant_cannot_shop(self, make_sub_order, make_batch):
        batch = make_batch(make_sub_order(kind=Restaurant("resto-1")))

        with pytest.raises(InvalidTransition):
            state_machine.start_shopping(batch, batch.primary.id)

    def test_unknown_sub_order(self, grocery, make_sub_order):
        with pytest.raises(SubOrderNotFound):
            state_machine.start_shopping(grocery, make_sub_order().id)


class TestProceedToDelivery:
    def test_regular_order_needs_a_found_item(self, grocery):
        batch = _shopping(grocery)

        with pytest.raises(InvalidTransition) as exc_info:
            state_machine.commit_payment(batch, batch.primary.id)

        assert exc_info.value.context["reason"] == "no_found_items"
        assert exc_info.value.sub_order_id == batch.primary.id
        assert batch.primary.status == S.SHOPPING

    def test_not_found_items_do_not_satisfy_guard(self, grocery):
        batch = _shopping(grocery)
        for item in batch.items():
            batch = state_machine.toggle_item(batch, item.id, False).batch

        assert not state_machine.can_proceed_to_delivery(batch, batch.primary.id)

    def test_commit_payment_goes_through_paid(self, grocery):
        batch = _shopping(grocery)
        batch = state_machine.toggle_item(batch, batch.items()[0].id, True).batch

        result = state_machine.commit_payment(batch, batch.primary.id)

        assert [(t.old_status, t.new_status) for t in result.transitions] == [
            (S.SHOPPING, S.PAID),
            (S.PAID, S.ON_THE_WAY),
        ]
        assert result.final_status == S.ON_THE_WAY
        assert len(result.events) == 2

    def test_regular_order_cannot_pay_before_shopping(self, grocery):
        with pytest.raises(InvalidTransition):
            state_machine.commit_payment(grocery, grocery.primary.id)

    def test_restaurant_pays_from_accepted(self, make_sub_order, make_batch):
        batch = make_batch(make_sub_order(kind=Restaurant("resto-1"), lines=[("Meal", "4500", "1")]))

        result = state_machine.commit_payment(batch, batch.primary.id)

        assert result.transitions[0].old_status == S.ACCEPTED
        assert result.batch.primary.status == S.ON_THE_WAY

    def test_reel_from_shop_needs_no_found_item(self, make_sub_order, make_batch):
        kind = ReelFromShop("reel-1", Decimal("1200"), Decimal("1"))
        batch = make_batch(make_sub_order(kind=kind, status=S.SHOPPING))

        assert state_machine.can_proceed_to_delivery(batch, batch.primary.id)


class TestDelivery:
    def test_arrive_from_on_the_way(self, make_sub_order, make_batch):
        batch = make_batch(make_sub_order(status=S.ON_THE_WAY))

        result = state_machine.arrive_at_customer(batch, batch.primary.id)

        assert result.batch.primary.status == S.AT_CUSTOMER

    def test_arrive_requires_on_the_way(self, grocery):
        with pytest.raises(InvalidTransition):
            state_machine.arrive_at_customer(_shopping(grocery), grocery.primary.id)

    @pytest.mark.parametrize("status", [S.ON_THE_WAY, S.AT_CUSTOMER])
    def test_deliver_without_proof_is_blocked(self, make_sub_order, make_batch, status):
        batch = make_batch(make_sub_order(status=status))

        with pytest.raises(ProofRequired) as exc_info:
            state_machine.mark_delivered(batch, batch.primary.id, has_proof=False)

        assert exc_info.value.context["attempted_status"] == S.DELIVERED
        assert batch.primary.status == status

    def test_deliver_with_proof(self, make_sub_order, make_batch):
        batch = make_batch(make_sub_order(status=S.AT_CUSTOMER))

        result = state_machine.mark_delivered(batch, batch.primary.id, has_proof=True)

        assert result.batch.primary.status == S.DELIVERED
        assert state_machine.derive_phase(result.batch) == BatchPhase.DONE

    def test_deliver_while_shopping_is_an_invalid_transition(self, grocery):
        with pytest.raises(InvalidTransition):
            state_machine.mark_delivered(_shopping(grocery), grocery.primary.id, has_proof=True)


# ---------------------------------------------------------------------------
# Item toggling
# ---------------------------------------------------------------------------


class TestToggleItem:
    def test_found_without_quantity_means_ordered(self, grocery):
        batch = _shopping(grocery)
        item = batch.items()[0]

        result = state_machine.toggle_item(batch, item.id, True)

        assert result.item.found is True
        assert result.effective_quantity == Decimal("2")
        assert result.clamped is False

    def test_found_with_partial_quantity(self, grocery):
        batch = _shopping(grocery)
        item = batch.items()[0]

        result = state_machine.toggle_item(batch, item.id, True, Decimal("1"))

        assert result.item.found_quantity == Decimal("1")
        assert result.batch.item(item.id).found_quantity == Decimal("1")
        assert result.clamped is False

    @pytest.mark.parametrize("quantity", ["5", "2.001", "-1"])
    def test_out_of_range_quantity_is_clamped(self, grocery, quantity):
        batch = _shopping(grocery)
        item = batch.items()[0]

        result = state_machine.toggle_item(batch, item.id, True, Decimal(quantity))

        assert result.effective_quantity == item.ordered_quantity
        assert result.clamped is True
        (event,) = result.events
        assert isinstance(event, ItemFoundStatusChanged)
        assert event.clamped is True
        assert event.found_quantity == "2"

    @pytest.mark.parametrize("quantity", ["0", "0.5", "1", "2", "3", "-0.1", None])
    def test_found_quantity_stays_in_range(self, grocery, quantity):
        batch = _shopping(grocery)
        item = batch.items()[0]
        requested = None if quantity is None else Decimal(quantity)

        stored = state_machine.toggle_item(batch, item.id, True, requested).item

        assert Decimal("0") <= stored.found_quantity <= stored.ordered_quantity

    def test_not_found_clears_quantity(self, grocery):
        batch = _shopping(grocery)
        item = batch.items()[0]
        batch = state_machine.toggle_item(batch, item.id, True, Decimal("1")).batch

        result = state_machine.toggle_item(batch, item.id, False, Decimal("1"))

        assert result.item.found is False
        assert result.item.found_quantity is None
        assert result.effective_quantity is None

    def test_toggle_outside_shopping_is_rejected(self, grocery):
        with pytest.raises(InvalidTransition):
            state_machine.toggle_item(grocery, grocery.items()[0].id, True)

    def test_unknown_item(self, grocery, make_item):
        stray = make_item(grocery.primary.id, "Z", "1")

        with pytest.raises(ItemNotFound):
            state_machine.toggle_item(_shopping(grocery), stray.id, True)

    def test_toggle_uses_owning_sub_order(self, make_sub_order, make_batch):
        second = make_sub_order("shop-y", lines=[("C", "300", "1")], status=S.SHOPPING)
        primary = make_sub_order("shop-x", extra_items=second.items)
        batch = make_batch(primary, second)
        item_id = second.items[0].id

        result = state_machine.toggle_item(batch, item_id, True)

        assert all(item.found for item in result.batch.primary.items)
        assert result.batch.combined[0].items[0].found is True
