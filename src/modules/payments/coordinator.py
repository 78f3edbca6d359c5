"""Payment Protocol Coordinator.

Drives one payment attempt for one sub-order:

1. Balance check: reserved balance must cover the found subtotal, else
   ``InsufficientReserve`` before any code is generated.
2. OTP issuance: a 5-digit code is delivered out of band; only its digest
   is stored on the session.
3. OTP verification: a mismatch leaves the code valid until the session
   expires; a match consumes it.
4. Transfer initiation and polling: status is polled at a fixed interval
   for a bounded number of attempts.  Gateway errors count as attempts.
5. Settlement: wallet debit, refund scheduling, sub-order transition and
   session close are applied in one unit of work, at most once per
   session key.

The coordinator never talks to the ORM.  Persistence goes through the
repositories it is given; ``unit_of_work`` is a context-manager factory
(``transaction.atomic`` in the Django layer).
"""

from __future__ import annotations

from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, ContextManager, Optional, Protocol
from uuid import UUID

import structlog

from modules.fulfillment import calculator
from modules.fulfillment.aggregate import OrderAggregate
from modules.fulfillment.exceptions import BatchNotFound, InvalidTransition
from modules.fulfillment.repositories.interfaces import IBatchRepository
from modules.fulfillment.state_machine import commit_payment, ensure_can_proceed_to_delivery
from modules.payments.constants import PAYMENT_DESCRIPTION, SessionState, TransferStatus
from modules.payments.events import (
    PaymentAborted,
    PaymentSessionStarted,
    PaymentSettled,
    RefundScheduled,
    TransferInitiated,
)
from modules.payments.exceptions import (
    ConcurrentSessionConflict,
    InsufficientReserve,
    InvalidOtp,
    MobileMoneyGatewayError,
    PaymentCancelled,
    PaymentSessionNotFound,
    SettlementInconsistency,
    TransferFailed,
    TransferTimeout,
)
from modules.payments.interfaces import (
    IMobileMoneyGateway,
    IOtpChannel,
    IWalletService,
    RefundRequest,
    SettlementRecord,
)
from modules.payments.repositories.interfaces import IPaymentSessionRepository
from modules.payments.session import CancellationToken, PaymentSession, generate_otp

logger = structlog.get_logger(__name__)


class Cancellable(Protocol):
    def is_cancelled(self) -> bool: ...

    def wait(self, seconds: float) -> bool: ...


@dataclass(frozen=True)
class PaymentSettings:
    otp_length: int = 5
    otp_ttl_seconds: int = 300
    poll_interval_seconds: float = 10
    poll_max_attempts: int = 30
    currency: str = "RWF"
    stale_grace_seconds: float = 60

    @property
    def stale_transfer_seconds(self) -> float:
        return self.poll_interval_seconds * self.poll_max_attempts + self.stale_grace_seconds


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentCoordinator:
    """Stepwise payment protocol: ``begin`` -> ``verify_otp`` -> ``poll``.

    Receives repositories and collaborators via constructor injection.
    """

    def __init__(
        self,
        batches: IBatchRepository,
        sessions: IPaymentSessionRepository,
        wallet: IWalletService,
        gateway: IMobileMoneyGateway,
        otp_channel: IOtpChannel,
        *,
        settings: Optional[PaymentSettings] = None,
        unit_of_work: Callable[[], ContextManager[Any]] = nullcontext,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._batches = batches
        self._sessions = sessions
        self._wallet = wallet
        self._gateway = gateway
        self._otp_channel = otp_channel
        self._settings = settings or PaymentSettings()
        self._uow = unit_of_work
        self._now = clock

    # ------------------------------------------------------------------
    # Steps 1-2: balance check and OTP issuance
    # ------------------------------------------------------------------

    def begin(
        self, batch_id: UUID, sub_order_id: UUID, shopper_id: Optional[int] = None
    ) -> PaymentSession:
        """Open a payment session for ``sub_order_id``.

        Raises:
            BatchNotFound: batch missing or owned by another shopper.
            ConcurrentSessionConflict: a session is already active.
            InvalidTransition: the sub-order cannot proceed to delivery.
            InsufficientReserve: reserved balance < found subtotal.
        """
        log = logger.bind(batch_id=str(batch_id), sub_order_id=str(sub_order_id))

        batch = self._load_batch(batch_id, shopper_id)
        existing = self._sessions.get_active_for_sub_order(sub_order_id)
        if existing is not None and existing.batch_id == batch.id and self._is_stalled(existing):
            self._resolve_stalled(existing)

        with self._uow():
            batch = self._load_batch(batch_id, shopper_id, for_update=True)
            self._ensure_no_active_session(sub_order_id)
            sub = ensure_can_proceed_to_delivery(batch, sub_order_id)

            amount = calculator.found_subtotal(batch, sub.id)
            original = calculator.original_subtotal(batch, sub.id)
            reserved = self._wallet.get_reserved_balance(batch.shopper_id)
            if reserved < amount:
                log.warning(
                    "payment.insufficient_reserve",
                    required=str(amount),
                    reserved=str(reserved),
                )
                raise InsufficientReserve(
                    f"Reserved balance {reserved} cannot cover {amount}.",
                    sub_order_id=sub.id,
                    required=amount,
                    reserved=reserved,
                )

            code = generate_otp(self._settings.otp_length)
            session = PaymentSession.issue(
                code,
                batch_id=batch.id,
                sub_order_id=sub.id,
                shopper_id=batch.shopper_id,
                customer_id=batch.customer_id,
                amount=amount,
                original_amount=original,
                currency=self._settings.currency,
                now=self._now(),
                ttl_seconds=self._settings.otp_ttl_seconds,
            )
            started = PaymentSessionStarted(
                aggregate_id=batch.id,
                sub_order_id=sub.id,
                session_id=session.id,
                amount=amount,
            )
            session = self._sessions.add(session, events=(started,))
            self._otp_channel.deliver(
                code,
                {
                    "session_key": session.session_key,
                    "batch_id": str(batch.id),
                    "sub_order_id": str(sub.id),
                    "shop_id": sub.shop_id,
                    "amount": str(amount),
                    "currency": session.currency,
                    "expires_at": session.otp_expires_at.isoformat(),
                },
            )

        log.info(
            "payment.otp_issued",
            session_key=session.key_prefix,
            amount=str(amount),
            original_amount=str(original),
        )
        return session

    # ------------------------------------------------------------------
    # Steps 3-4a: OTP verification and transfer initiation
    # ------------------------------------------------------------------

    def verify_otp(
        self,
        session_key: str,
        code: str,
        payer_code: str,
        shopper_id: Optional[int] = None,
    ) -> PaymentSession:
        """Check ``code`` and, on a match, start the mobile-money transfer.

        Raises:
            PaymentSessionNotFound: unknown key or another shopper's session.
            InvalidOtp: mismatch (retry allowed), expired or already used.
            TransferFailed: the gateway refused to start the transfer.
        """
        expired = False
        with self._uow():
            session = self._load_session(session_key, shopper_id, for_update=True)
            log = logger.bind(
                session_key=session.key_prefix, sub_order_id=str(session.sub_order_id)
            )
            if session.state != SessionState.AWAITING_OTP:
                raise InvalidOtp(
                    "This payment session no longer accepts a code.",
                    sub_order_id=session.sub_order_id,
                    state=session.state,
                    reason="not_awaiting_otp",
                )
            if session.otp_expired(self._now()):
                self._end(session, SessionState.EXPIRED, "otp_expired")
                expired = True
            elif not session.otp_matches(code):
                log.warning("payment.otp_mismatch")
                raise InvalidOtp(
                    "The code does not match.",
                    sub_order_id=session.sub_order_id,
                    reason="mismatch",
                )
            else:
                session = self._sessions.save(session.transfer_started(self._now()))

        if expired:
            log.info("payment.otp_expired")
            raise InvalidOtp(
                "The code has expired; start the payment again.",
                sub_order_id=session.sub_order_id,
                reason="expired",
            )

        log.info("payment.otp_verified")
        return self._initiate_transfer(session, payer_code)

    def _initiate_transfer(self, session: PaymentSession, payer_code: str) -> PaymentSession:
        log = logger.bind(session_key=session.key_prefix, sub_order_id=str(session.sub_order_id))
        try:
            reference_id = self._gateway.initiate_transfer(
                session.amount, session.currency, payer_code, str(session.id)
            )
        except MobileMoneyGatewayError as exc:
            with self._uow():
                self._end(session, SessionState.FAILED, "initiation_failed")
            log.error("payment.transfer_initiation_failed", error=str(exc))
            raise TransferFailed(
                "The mobile-money transfer could not be started.",
                sub_order_id=session.sub_order_id,
                amount=session.amount,
                reason=str(exc),
            ) from exc

        with self._uow():
            current = self._load_session(session.session_key, for_update=True)
            event = TransferInitiated(
                aggregate_id=current.batch_id,
                sub_order_id=current.sub_order_id,
                session_id=current.id,
                reference_id=reference_id,
            )
            current = self._sessions.save(current.with_reference(reference_id), events=(event,))

        log.info("payment.transfer_initiated", reference_id=reference_id, amount=str(session.amount))
        return current

    # ------------------------------------------------------------------
    # Step 4b: polling
    # ------------------------------------------------------------------

    def poll(self, session_key: str, token: Optional[Cancellable] = None) -> SettlementRecord:
        """Poll the transfer until it settles, fails, is cancelled or times out.

        A status of ``SUCCESSFUL`` always wins over a pending cancellation:
        status is checked before the token on every attempt.

        Raises:
            TransferFailed: provider reported ``FAILED``.
            PaymentCancelled: operator cancelled before success.
            TransferTimeout: still pending after the last attempt.
        """
        token = token or CancellationToken()
        session = self._load_session(session_key)
        if session.state == SessionState.SETTLED:
            return self.settle(session_key)
        if session.state != SessionState.TRANSFER_PENDING or not session.reference_id:
            raise PaymentSessionNotFound(
                "The payment session is not waiting for a transfer.",
                sub_order_id=session.sub_order_id,
                state=session.state,
            )

        log = logger.bind(
            session_key=session.key_prefix,
            sub_order_id=str(session.sub_order_id),
            reference_id=session.reference_id,
        )
        max_attempts = self._settings.poll_max_attempts
        last_error: Optional[str] = None

        for attempt in range(1, max_attempts + 1):
            status: Optional[str] = None
            try:
                status = self._gateway.get_transfer_status(session.reference_id)
            except MobileMoneyGatewayError as exc:
                last_error = str(exc)
                log.warning("payment.poll_error", attempt=attempt, error=last_error)
            else:
                log.info("payment.poll_attempt", attempt=attempt, status=status)
            self._record_attempt(session_key, attempt, status)

            if status == TransferStatus.SUCCESSFUL:
                return self.settle(session_key)
            if status == TransferStatus.FAILED:
                with self._uow():
                    self._end(self._load_session(session_key, for_update=True),
                              SessionState.FAILED, "transfer_failed")
                log.warning("payment.transfer_failed", attempt=attempt)
                raise TransferFailed(
                    "The mobile-money transfer failed.",
                    sub_order_id=session.sub_order_id,
                    amount=session.amount,
                    reference_id=session.reference_id,
                )
            if token.is_cancelled():
                with self._uow():
                    ended = self._end(
                        self._load_session(session_key, for_update=True),
                        SessionState.CANCELLED,
                        "cancelled",
                    )
                if ended.state == SessionState.SETTLED:
                    return self.settle(session_key)
                log.info("payment.cancelled", attempt=attempt)
                raise PaymentCancelled(
                    "The payment was cancelled.",
                    sub_order_id=session.sub_order_id,
                    attempts=attempt,
                )
            if attempt < max_attempts:
                token.wait(self._settings.poll_interval_seconds)

        with self._uow():
            ended = self._end(
                self._load_session(session_key, for_update=True),
                SessionState.TIMED_OUT,
                "poll_exhausted",
            )
        if ended.state == SessionState.SETTLED:
            return self.settle(session_key)
        log.warning("payment.transfer_timeout", attempts=max_attempts, last_error=last_error)
        raise TransferTimeout(
            f"Transfer still pending after {max_attempts} attempts.",
            sub_order_id=session.sub_order_id,
            amount=session.amount,
            attempts=max_attempts,
            last_error=last_error,
        )

    def _record_attempt(self, session_key: str, attempt: int, status: Optional[str]) -> None:
        with self._uow():
            current = self._load_session(session_key, for_update=True)
            if current.is_active:
                self._sessions.save(current.polled(attempt, status, self._now()))

    # ------------------------------------------------------------------
    # Step 5: settlement
    # ------------------------------------------------------------------

    def settle(self, session_key: str) -> SettlementRecord:
        """Apply settlement once; replays return the first record."""
        with self._uow():
            session = self._load_session(session_key, for_update=True)
            log = logger.bind(
                session_key=session.key_prefix, sub_order_id=str(session.sub_order_id)
            )
            if session.state == SessionState.SETTLED:
                log.info("payment.settlement_replayed")
                return SettlementRecord(
                    transaction_id=session.transaction_id,
                    debit=session.amount,
                    refund_id=session.refund_id,
                    refund_amount=session.shortfall if session.refund_id else Decimal("0.00"),
                    replayed=True,
                )
            if session.state != SessionState.TRANSFER_PENDING:
                raise SettlementInconsistency(
                    f"Cannot settle a session in state '{session.state}'.",
                    sub_order_id=session.sub_order_id,
                    state=session.state,
                )

            batch = self._batches.get_for_update(session.batch_id)
            if batch is None:
                raise BatchNotFound(batch_id=session.batch_id)

            try:
                result = commit_payment(batch, session.sub_order_id)
                refund = self._refund_request(batch, session)
                record = self._wallet.settle(
                    session.shopper_id,
                    session.amount,
                    refund,
                    idempotency_key=session.session_key,
                    description=PAYMENT_DESCRIPTION,
                    sub_order_id=session.sub_order_id,
                )
            except (InvalidTransition, InsufficientReserve) as exc:
                log.error("payment.settlement_inconsistent", error=str(exc))
                raise SettlementInconsistency(
                    "Transfer succeeded but settlement could not be applied.",
                    sub_order_id=session.sub_order_id,
                    amount=session.amount,
                    reason=getattr(exc, "kind", ""),
                ) from exc

            self._batches.record(
                result.batch,
                result.transitions,
                result.events,
                notes=f"Paid {session.amount} {session.currency} (transfer {session.reference_id})",
            )

            events = [
                PaymentSettled(
                    aggregate_id=session.batch_id,
                    sub_order_id=session.sub_order_id,
                    session_id=session.id,
                    amount=session.amount,
                    transaction_id=record.transaction_id,
                    refund_id=record.refund_id,
                )
            ]
            if record.refund_id is not None:
                events.append(
                    RefundScheduled(
                        aggregate_id=session.batch_id,
                        sub_order_id=session.sub_order_id,
                        refund_id=record.refund_id,
                        amount=record.refund_amount,
                    )
                )
            self._sessions.save(session.settled(record.transaction_id, record.refund_id), events)

        log.info(
            "payment.settled",
            debit=str(record.debit),
            refund=str(record.refund_amount),
            transaction_id=str(record.transaction_id),
        )
        return record

    def _refund_request(
        self, batch: OrderAggregate, session: PaymentSession
    ) -> Optional[RefundRequest]:
        if session.shortfall <= 0:
            return None
        return RefundRequest(
            amount=calculator.money(session.shortfall),
            customer_id=session.customer_id,
            batch_id=session.batch_id,
            sub_order_id=session.sub_order_id,
            reason=refund_reason(batch, session),
            idempotency_key=f"refund:{session.session_key}",
        )

    # ------------------------------------------------------------------
    # Cancellation and queries
    # ------------------------------------------------------------------

    def cancel(self, session_key: str, shopper_id: Optional[int] = None) -> PaymentSession:
        """Cancel a session.

        Before the transfer starts the session ends at once.  While polling,
        the request is flagged and the poll loop stops at its next check.
        A pending transfer that no poll loop has touched for the whole poll
        window is resolved here instead.
        Cancelling a finished session is a no-op.
        """
        session = self._load_session(session_key, shopper_id)
        if self._is_stalled(session):
            return self._resolve_stalled(session)

        with self._uow():
            session = self._load_session(session_key, shopper_id, for_update=True)
            if not session.is_active:
                return session
            if session.state == SessionState.AWAITING_OTP:
                session = self._end(session, SessionState.CANCELLED, "cancelled")
            else:
                session = self._sessions.save(session.request_cancel())
        logger.info(
            "payment.cancel_requested",
            session_key=session.key_prefix,
            sub_order_id=str(session.sub_order_id),
            state=session.state,
        )
        return session

    def get(self, session_key: str, shopper_id: Optional[int] = None) -> PaymentSession:
        return self._load_session(session_key, shopper_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_batch(
        self, batch_id: UUID, shopper_id: Optional[int], for_update: bool = False
    ) -> OrderAggregate:
        batch = (
            self._batches.get_for_update(batch_id)
            if for_update
            else self._batches.get_by_id(batch_id)
        )
        if batch is None or (shopper_id is not None and batch.shopper_id != shopper_id):
            raise BatchNotFound(f"Batch {batch_id} not found.", batch_id=batch_id)
        return batch

    def _load_session(
        self, session_key: str, shopper_id: Optional[int] = None, for_update: bool = False
    ) -> PaymentSession:
        session = (
            self._sessions.get_for_update(session_key)
            if for_update
            else self._sessions.get_by_key(session_key)
        )
        if session is None or (shopper_id is not None and session.shopper_id != shopper_id):
            raise PaymentSessionNotFound("Payment session not found.")
        return session

    def _ensure_no_active_session(self, sub_order_id: UUID) -> None:
        existing = self._sessions.get_active_for_sub_order(sub_order_id)
        if existing is None:
            return
        if existing.otp_expired(self._now()):
            self._end(existing, SessionState.EXPIRED, "otp_expired")
            return
        raise ConcurrentSessionConflict(
            f"Sub-order {sub_order_id} already has a payment in progress.",
            sub_order_id=sub_order_id,
            state=existing.state,
        )

    def _is_stalled(self, session: PaymentSession) -> bool:
        return session.transfer_stalled(self._now(), self._settings.stale_transfer_seconds)

    def _resolve_stalled(self, session: PaymentSession) -> PaymentSession:
        """Close a pending transfer that no poll loop is driving.

        One last status check decides: ``SUCCESSFUL`` settles, ``FAILED``
        fails, anything else (gateway errors included) times the session out.
        """
        log = logger.bind(
            session_key=session.key_prefix,
            sub_order_id=str(session.sub_order_id),
            reference_id=session.reference_id,
        )
        status: Optional[str] = None
        if session.reference_id:
            try:
                status = self._gateway.get_transfer_status(session.reference_id)
            except MobileMoneyGatewayError as exc:
                log.warning("payment.stalled_status_error", error=str(exc))

        if status == TransferStatus.SUCCESSFUL:
            self.settle(session.session_key)
            log.info("payment.stalled_transfer_settled")
            return self._load_session(session.session_key)

        if status == TransferStatus.FAILED:
            state, reason = SessionState.FAILED, "transfer_failed"
        else:
            state, reason = SessionState.TIMED_OUT, "poll_stalled"
        with self._uow():
            current = self._load_session(session.session_key, for_update=True)
            if self._is_stalled(current):
                current = self._end(current, state, reason)
        log.warning("payment.stalled_transfer_ended", state=current.state, status=status)
        return current

    def _end(self, session: PaymentSession, state: str, reason: str) -> PaymentSession:
        """Close an active session; finished sessions are returned unchanged."""
        if not session.is_active:
            return session
        event = PaymentAborted(
            aggregate_id=session.batch_id,
            sub_order_id=session.sub_order_id,
            session_id=session.id,
            state=state,
            reason=reason,
        )
        return self._sessions.save(session.ended(state, reason), events=(event,))


def refund_reason(batch: OrderAggregate, session: PaymentSession) -> str:
    """Ledger text listing found and missing items for a refund row."""
    sub = batch.sub_order(session.sub_order_id)
    found = []
    missing = []
    for item in batch.items_for(sub.id):
        if item.found:
            found.append(f"{item.product_name} x {item.found_quantity}")
        short = calculator.missing_quantity(item)
        if short > 0:
            missing.append(f"{item.product_name} x {short}")
    parts = [f"Refund for items not found at shop {sub.shop_id}."]
    if found:
        parts.append("Found: " + ", ".join(found) + ".")
    if missing:
        parts.append("Not found: " + ", ".join(missing) + ".")
    parts.append(
        f"Order total {session.original_amount}, found total {session.amount}, "
        f"refund {calculator.money(session.shortfall)}."
    )
    return " ".join(parts)
