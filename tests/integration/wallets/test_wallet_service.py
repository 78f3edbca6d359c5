"""Integration tests for WalletService (row-locked, idempotent movements)."""

from __future__ import annotations

from decimal import Decimal

import pytest

from modules.payments.exceptions import InsufficientReserve, WalletNotFound
from modules.payments.interfaces import RefundRequest
from modules.wallets.models import Refund, RefundStatus, TransactionType, Wallet, WalletTransaction
from modules.wallets.services import WalletService

pytestmark = pytest.mark.integration


@pytest.fixture()
def service():
    return WalletService()


@pytest.fixture()
def sub_order(single_shop_batch):
    return single_shop_batch.primary


def _refund(batch, sub_order, amount="1500.00"):
    return RefundRequest(
        amount=Decimal(amount),
        customer_id=batch.customer_id,
        batch_id=batch.id,
        sub_order_id=sub_order.id,
        reason="Refund for items not found at shop shop-x.",
        idempotency_key="refund:session-1",
    )


class TestQueries:
    def test_missing_wallet(self, service, other_shopper):
        with pytest.raises(WalletNotFound):
            service.get_reserved_balance(other_shopper.pk)

    def test_reserved_balance(self, service, shopper, wallet):
        Wallet.objects.filter(pk=wallet.pk).update(reserved_balance=Decimal("250.00"))
        assert service.get_reserved_balance(shopper.pk) == Decimal("250.00")


class TestReserveForShopping:
    def test_reserves_order_value_and_credits_fees(self, service, shopper, sub_order):
        wallet = service.reserve_for_shopping(
            shopper.pk, sub_order.id, Decimal("2500.00"), Decimal("1000.00")
        )

        assert wallet.reserved_balance == Decimal("2500.00")
        assert wallet.available_balance == Decimal("1000.00")
        types = set(WalletTransaction.objects.values_list("type", flat=True))
        assert types == {TransactionType.RESERVE, TransactionType.EARNINGS}

    def test_replay_moves_nothing(self, service, shopper, sub_order):
        for _ in range(2):
            service.reserve_for_shopping(
                shopper.pk, sub_order.id, Decimal("2500.00"), Decimal("1000.00")
            )

        wallet = service.get_wallet(shopper.pk)
        assert wallet.reserved_balance == Decimal("2500.00")
        assert wallet.available_balance == Decimal("1000.00")
        assert WalletTransaction.objects.count() == 2

    def test_creates_missing_wallet(self, service, other_shopper, sub_order):
        service.reserve_for_shopping(other_shopper.pk, sub_order.id, Decimal("10.00"), Decimal("0"))

        assert service.get_reserved_balance(other_shopper.pk) == Decimal("10.00")
        assert not WalletTransaction.objects.filter(type=TransactionType.EARNINGS).exists()


class TestSettle:
    @pytest.fixture()
    def reserved(self, service, shopper, sub_order):
        service.reserve_for_shopping(shopper.pk, sub_order.id, Decimal("2500.00"), Decimal("0"))

    def test_debits_reserve_and_schedules_refund(
        self, service, shopper, single_shop_batch, sub_order, reserved
    ):
        record = service.settle(
            shopper.pk,
            Decimal("1000.00"),
            _refund(single_shop_batch, sub_order),
            idempotency_key="session-1",
            description="Payment for found order items",
            sub_order_id=sub_order.id,
        )

        assert record.debit == Decimal("1000.00")
        assert record.refund_amount == Decimal("1500.00")
        assert record.replayed is False
        assert service.get_reserved_balance(shopper.pk) == Decimal("1500.00")

        refund = Refund.objects.get(id=record.refund_id)
        assert refund.status == RefundStatus.PENDING
        assert refund.paid is False
        assert refund.generated_by == "System"
        assert refund.customer_id == "customer-1"
        assert refund.transaction_id == record.transaction_id

    def test_replay_returns_first_record(
        self, service, shopper, single_shop_batch, sub_order, reserved
    ):
        first = service.settle(
            shopper.pk, Decimal("1000.00"), _refund(single_shop_batch, sub_order), "session-1"
        )
        again = service.settle(
            shopper.pk, Decimal("1000.00"), _refund(single_shop_batch, sub_order), "session-1"
        )

        assert again.replayed is True
        assert (again.transaction_id, again.refund_id) == (first.transaction_id, first.refund_id)
        assert service.get_reserved_balance(shopper.pk) == Decimal("1500.00")
        assert Refund.objects.count() == 1
        assert WalletTransaction.objects.filter(type=TransactionType.PAYMENT).count() == 1

    def test_no_refund_when_nothing_is_missing(self, service, shopper, sub_order, reserved):
        record = service.settle(shopper.pk, Decimal("2500.00"), None, "session-2")

        assert record.refund_id is None
        assert record.refund_amount == Decimal("0.00")
        assert service.get_reserved_balance(shopper.pk) == Decimal("0.00")

    def test_insufficient_reserve_moves_nothing(self, service, shopper, sub_order, reserved):
        with pytest.raises(InsufficientReserve) as exc_info:
            service.settle(shopper.pk, Decimal("3000.00"), None, "session-3", sub_order_id=sub_order.id)

        assert exc_info.value.context["required"] == Decimal("3000.00")
        assert exc_info.value.context["reserved"] == Decimal("2500.00")
        assert service.get_reserved_balance(shopper.pk) == Decimal("2500.00")
        assert not WalletTransaction.objects.filter(type=TransactionType.PAYMENT).exists()
