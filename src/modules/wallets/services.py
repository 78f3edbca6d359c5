"""Wallet service layer.

The wallet collaborator of the payment protocol.  Every balance change
runs under a row lock on the wallet and is recorded as a transaction
with a unique idempotency key; replaying a key returns the first record
and moves nothing.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog
from django.db import transaction

from modules.payments.exceptions import InsufficientReserve, WalletNotFound
from modules.payments.interfaces import IWalletService, RefundRequest, SettlementRecord
from modules.wallets.models import Refund, TransactionType, Wallet, WalletTransaction

logger = structlog.get_logger(__name__)


class WalletService(IWalletService):
    def get_wallet(self, shopper_id: Any) -> Wallet:
        wallet = Wallet.objects.filter(shopper_id=shopper_id).first()
        if wallet is None:
            raise WalletNotFound(f"Shopper {shopper_id} has no wallet.", shopper_id=shopper_id)
        return wallet

    def get_reserved_balance(self, shopper_id: Any) -> Decimal:
        return self.get_wallet(shopper_id).reserved_balance

    def _lock(self, shopper_id: Any) -> Wallet:
        wallet = Wallet.objects.select_for_update().filter(shopper_id=shopper_id).first()
        if wallet is None:
            raise WalletNotFound(f"Shopper {shopper_id} has no wallet.", shopper_id=shopper_id)
        return wallet

    # ------------------------------------------------------------------
    # Shopping start
    # ------------------------------------------------------------------

    @transaction.atomic
    def reserve_for_shopping(
        self,
        shopper_id: Any,
        sub_order_id: UUID,
        amount: Decimal,
        earnings: Decimal,
    ) -> Wallet:
        """Reserve the order value and credit the fees as earnings.

        Idempotent per sub-order.
        """
        wallet, created = Wallet.objects.get_or_create(shopper_id=shopper_id)
        wallet = Wallet.objects.select_for_update().get(pk=wallet.pk)
        log = logger.bind(shopper_id=shopper_id, sub_order_id=str(sub_order_id))
        if created:
            log.info("wallet.created")

        reserve_key = f"reserve:{sub_order_id}"
        if not WalletTransaction.objects.filter(idempotency_key=reserve_key).exists():
            wallet.reserved_balance += amount
            WalletTransaction.objects.create(
                wallet=wallet,
                type=TransactionType.RESERVE,
                amount=amount,
                sub_order_id=sub_order_id,
                description="Reserved for order items",
                idempotency_key=reserve_key,
            )
        earnings_key = f"earnings:{sub_order_id}"
        if earnings > 0 and not WalletTransaction.objects.filter(
            idempotency_key=earnings_key
        ).exists():
            wallet.available_balance += earnings
            WalletTransaction.objects.create(
                wallet=wallet,
                type=TransactionType.EARNINGS,
                amount=earnings,
                sub_order_id=sub_order_id,
                description="Service and delivery fees",
                idempotency_key=earnings_key,
            )
        wallet.save(update_fields=["reserved_balance", "available_balance"])
        log.info(
            "wallet.reserved",
            amount=str(amount),
            earnings=str(earnings),
            reserved_balance=str(wallet.reserved_balance),
        )
        return wallet

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    @transaction.atomic
    def settle(
        self,
        shopper_id: Any,
        debit: Decimal,
        scheduled_refund: Optional[RefundRequest],
        idempotency_key: str,
        description: str = "",
        sub_order_id: Optional[UUID] = None,
    ) -> SettlementRecord:
        log = logger.bind(shopper_id=shopper_id, sub_order_id=str(sub_order_id))

        existing = WalletTransaction.objects.filter(idempotency_key=idempotency_key).first()
        if existing is not None:
            refund = existing.refunds.first()
            log.info("wallet.settlement_replayed", transaction_id=str(existing.id))
            return SettlementRecord(
                transaction_id=existing.id,
                debit=existing.amount,
                refund_id=refund.id if refund else None,
                refund_amount=refund.amount if refund else Decimal("0.00"),
                replayed=True,
            )

        wallet = self._lock(shopper_id)
        if wallet.reserved_balance < debit:
            raise InsufficientReserve(
                f"Reserved balance {wallet.reserved_balance} cannot cover {debit}.",
                sub_order_id=sub_order_id,
                required=debit,
                reserved=wallet.reserved_balance,
            )

        wallet.reserved_balance -= debit
        wallet.save(update_fields=["reserved_balance"])
        payment = WalletTransaction.objects.create(
            wallet=wallet,
            type=TransactionType.PAYMENT,
            amount=debit,
            sub_order_id=sub_order_id,
            description=description,
            idempotency_key=idempotency_key,
        )

        refund_row = None
        if scheduled_refund is not None and scheduled_refund.amount > 0:
            refund_row, _ = Refund.objects.get_or_create(
                idempotency_key=scheduled_refund.idempotency_key,
                defaults={
                    "sub_order_id": scheduled_refund.sub_order_id,
                    "batch_id": scheduled_refund.batch_id,
                    "transaction": payment,
                    "customer_id": scheduled_refund.customer_id,
                    "amount": scheduled_refund.amount,
                    "reason": scheduled_refund.reason,
                },
            )

        log.info(
            "wallet.settled",
            debit=str(debit),
            reserved_balance=str(wallet.reserved_balance),
            refund=str(refund_row.amount) if refund_row else "0.00",
        )
        return SettlementRecord(
            transaction_id=payment.id,
            debit=debit,
            refund_id=refund_row.id if refund_row else None,
            refund_amount=refund_row.amount if refund_row else Decimal("0.00"),
        )
