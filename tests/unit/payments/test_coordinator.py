"""Unit tests for the payment protocol coordinator with in-memory collaborators."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest
from django.core.cache import cache

from modules.fulfillment import state_machine
from modules.fulfillment.aggregate import Restaurant
from modules.fulfillment.constants import SubOrderStatus
from modules.fulfillment.exceptions import BatchNotFound, InvalidTransition
from modules.fulfillment.repositories.interfaces import IBatchRepository
from modules.payments.constants import SessionState, TransferStatus
from modules.payments.coordinator import PaymentCoordinator, PaymentSettings
from modules.payments.events import PaymentAborted, PaymentSettled, RefundScheduled
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
from modules.payments.gateways import MomoGateway
from modules.payments.interfaces import (
    IMobileMoneyGateway,
    IOtpChannel,
    IWalletService,
    SettlementRecord,
)
from modules.payments.repositories.interfaces import IPaymentSessionRepository
from modules.payments.session import CancellationToken, digest_otp

pytestmark = pytest.mark.unit

S = SubOrderStatus
PENDING = TransferStatus.PENDING
SUCCESSFUL = TransferStatus.SUCCESSFUL
FAILED = TransferStatus.FAILED


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class InMemoryBatchRepository(IBatchRepository):
    def __init__(self, *batches):
        self.batches = {batch.id: batch for batch in batches}
        self.history = []
        self.events = []

    def create(self, data):
        raise NotImplementedError

    def get_by_id(self, id):
        return self.batches.get(id)

    def get_for_update(self, id):
        return self.batches.get(id)

    def list(self, filters=None):
        return list(self.batches.values())

    def save(self, entity):
        self.batches[entity.id] = entity
        return entity

    def record(self, entity, transitions=(), events=(), notes=""):
        self.save(entity)
        for transition in transitions:
            self.add_history(transition.sub_order_id, transition.old_status, transition.new_status, notes)
        self.events.extend(events)
        return entity

    def add_history(self, sub_order_id, old_status, new_status, notes=""):
        self.history.append((sub_order_id, old_status, new_status))


class InMemorySessionRepository(IPaymentSessionRepository):
    def __init__(self):
        self.sessions = {}
        self.events = []

    def add(self, entity, events=()):
        if self.get_active_for_sub_order(entity.sub_order_id) is not None:
            raise ConcurrentSessionConflict(sub_order_id=entity.sub_order_id)
        self.sessions[entity.session_key] = entity
        self.events.extend(events)
        return entity

    def get_by_id(self, id):
        return next((s for s in self.sessions.values() if s.id == id), None)

    def get_by_key(self, session_key):
        return self.sessions.get(session_key)

    def get_for_update(self, session_key):
        return self.sessions.get(session_key)

    def get_active_for_sub_order(self, sub_order_id):
        return next(
            (s for s in self.sessions.values() if s.sub_order_id == sub_order_id and s.is_active),
            None,
        )

    def list(self, filters=None):
        return list(self.sessions.values())

    def save(self, entity, events=()):
        self.sessions[entity.session_key] = entity
        self.events.extend(events)
        return entity

    def is_cancel_requested(self, session_key):
        return self.sessions[session_key].cancel_requested


class InMemoryWallet(IWalletService):
    def __init__(self, reserved):
        self.reserved = Decimal(reserved)
        self.settlements = {}
        self.refunds = []

    def get_reserved_balance(self, shopper_id):
        return self.reserved

    def reserve_for_shopping(self, shopper_id, sub_order_id, amount, earnings):
        self.reserved += amount

    def settle(self, shopper_id, debit, scheduled_refund, idempotency_key, description="", sub_order_id=None):
        if idempotency_key in self.settlements:
            return replace(self.settlements[idempotency_key], replayed=True)
        if self.reserved < debit:
            raise InsufficientReserve(required=debit, reserved=self.reserved)
        self.reserved -= debit
        refund_id = None
        if scheduled_refund is not None:
            refund_id = uuid4()
            self.refunds.append(scheduled_refund)
        record = SettlementRecord(
            transaction_id=uuid4(),
            debit=debit,
            refund_id=refund_id,
            refund_amount=scheduled_refund.amount if scheduled_refund else Decimal("0.00"),
        )
        self.settlements[idempotency_key] = record
        return record


class ScriptedGateway(IMobileMoneyGateway):
    """Returns the scripted statuses in order; exceptions in the script are raised."""

    def __init__(self, statuses=(), initiation_error=None):
        self.statuses = list(statuses)
        self.initiation_error = initiation_error
        self.transfers = []
        self.status_calls = 0

    def initiate_transfer(self, amount, currency, payer_code, external_id):
        if self.initiation_error is not None:
            raise self.initiation_error
        self.transfers.append((amount, currency, payer_code, external_id))
        return "ref-1"

    def get_transfer_status(self, reference_id):
        self.status_calls += 1
        status = self.statuses.pop(0)
        if isinstance(status, Exception):
            raise status
        return status


class CapturingChannel(IOtpChannel):
    def __init__(self):
        self.deliveries = []

    def deliver(self, code, context):
        self.deliveries.append((code, context))

    @property
    def last_code(self):
        return self.deliveries[-1][0]


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def found_batch(make_sub_order, make_batch):
    """Shopping: A (2 x 1000) found 1, B (1 x 500) found -> found 1500, original 2500."""
    sub = make_sub_order(
        lines=[("A", "1000", "2"), ("B", "500", "1")],
        status=S.SHOPPING,
        service_fee="300",
        delivery_fee="700",
    )
    batch = make_batch(sub, shopper_id=7)
    a, b = batch.items()
    batch = state_machine.toggle_item(batch, a.id, True, Decimal("1")).batch
    return state_machine.toggle_item(batch, b.id, True).batch


class Harness:
    def __init__(self, batch, reserved="5000", statuses=(), initiation_error=None, gateway=None):
        self.batch = batch
        self.sub_order_id = batch.primary.id
        self.batches = InMemoryBatchRepository(batch)
        self.sessions = InMemorySessionRepository()
        self.wallet = InMemoryWallet(reserved)
        self.gateway = gateway or ScriptedGateway(statuses, initiation_error)
        self.channel = CapturingChannel()
        self.clock = FakeClock()
        self.coordinator = PaymentCoordinator(
            self.batches,
            self.sessions,
            self.wallet,
            self.gateway,
            self.channel,
            settings=PaymentSettings(poll_interval_seconds=0),
            clock=self.clock,
        )

    def begin(self):
        return self.coordinator.begin(self.batch.id, self.sub_order_id, 7)

    def verified(self):
        session = self.begin()
        return self.coordinator.verify_otp(session.session_key, self.channel.last_code, "250788000000", 7)

    def current_status(self):
        return self.batches.batches[self.batch.id].sub_order(self.sub_order_id).status

    def session(self, key):
        return self.sessions.sessions[key]


# ---------------------------------------------------------------------------
# Steps 1-2
# ---------------------------------------------------------------------------


class TestBegin:
    def test_insufficient_reserve_aborts_before_otp(self, found_batch):
        harness = Harness(found_batch, reserved="1200")

        with pytest.raises(InsufficientReserve) as exc_info:
            harness.begin()

        assert exc_info.value.context["required"] == Decimal("1500.00")
        assert exc_info.value.context["reserved"] == Decimal("1200")
        assert harness.channel.deliveries == []
        assert harness.sessions.sessions == {}
        assert harness.wallet.reserved == Decimal("1200")
        assert harness.current_status() == S.SHOPPING

    def test_issues_otp_for_found_subtotal(self, found_batch):
        harness = Harness(found_batch)

        session = harness.begin()

        assert session.state == SessionState.AWAITING_OTP
        assert session.amount == Decimal("1500.00")
        assert session.original_amount == Decimal("2500.00")
        code, context = harness.channel.deliveries[0]
        assert len(code) == 5 and code.isdigit()
        assert session.otp_digest == digest_otp(session.session_key, code)
        assert context["sub_order_id"] == str(harness.sub_order_id)
        assert context["amount"] == "1500.00"

    def test_second_session_for_same_sub_order_conflicts(self, found_batch):
        harness = Harness(found_batch)
        harness.begin()

        with pytest.raises(ConcurrentSessionConflict):
            harness.begin()

        assert len(harness.channel.deliveries) == 1

    def test_expired_session_is_replaced(self, found_batch):
        harness = Harness(found_batch)
        first = harness.begin()
        harness.clock.advance(301)

        second = harness.begin()

        assert harness.session(first.session_key).state == SessionState.EXPIRED
        assert second.session_key != first.session_key

    def test_guard_is_checked_before_the_wallet(self, make_sub_order, make_batch):
        batch = make_batch(make_sub_order(lines=[("A", "1000", "1")], status=S.SHOPPING), shopper_id=7)
        harness = Harness(batch, reserved="0")

        with pytest.raises(InvalidTransition):
            harness.begin()

    def test_other_shopper_cannot_pay(self, found_batch):
        harness = Harness(found_batch)

        with pytest.raises(BatchNotFound):
            harness.coordinator.begin(found_batch.id, harness.sub_order_id, 99)


# ---------------------------------------------------------------------------
# Steps 3-4a
# ---------------------------------------------------------------------------


class TestVerifyOtp:
    def test_mismatch_can_be_retried(self, found_batch):
        harness = Harness(found_batch)
        session = harness.begin()
        wrong = "00000" if harness.channel.last_code != "00000" else "11111"

        with pytest.raises(InvalidOtp) as exc_info:
            harness.coordinator.verify_otp(session.session_key, wrong, "250788000000")

        assert exc_info.value.context["reason"] == "mismatch"
        assert harness.session(session.session_key).state == SessionState.AWAITING_OTP

        verified = harness.coordinator.verify_otp(
            session.session_key, harness.channel.last_code, "250788000000"
        )
        assert verified.state == SessionState.TRANSFER_PENDING

    def test_match_starts_transfer(self, found_batch):
        harness = Harness(found_batch)

        session = harness.verified()

        assert session.state == SessionState.TRANSFER_PENDING
        assert session.reference_id == "ref-1"
        amount, currency, payer_code, external_id = harness.gateway.transfers[0]
        assert amount == Decimal("1500.00")
        assert currency == "RWF"
        assert payer_code == "250788000000"
        assert external_id == str(session.id)

    def test_code_is_single_use(self, found_batch):
        harness = Harness(found_batch)
        session = harness.verified()

        with pytest.raises(InvalidOtp) as exc_info:
            harness.coordinator.verify_otp(session.session_key, harness.channel.last_code, "250788000000")

        assert exc_info.value.context["reason"] == "not_awaiting_otp"
        assert len(harness.gateway.transfers) == 1

    def test_expired_code(self, found_batch):
        harness = Harness(found_batch)
        session = harness.begin()
        harness.clock.advance(300)

        with pytest.raises(InvalidOtp) as exc_info:
            harness.coordinator.verify_otp(session.session_key, harness.channel.last_code, "250788000000")

        assert exc_info.value.context["reason"] == "expired"
        assert harness.session(session.session_key).state == SessionState.EXPIRED
        assert harness.gateway.transfers == []

    def test_initiation_error_fails_session(self, found_batch):
        harness = Harness(found_batch, initiation_error=MobileMoneyGatewayError("down"))
        session = harness.begin()

        with pytest.raises(TransferFailed):
            harness.coordinator.verify_otp(session.session_key, harness.channel.last_code, "250788000000")

        stored = harness.session(session.session_key)
        assert stored.state == SessionState.FAILED
        assert stored.failure_reason == "initiation_failed"
        assert harness.current_status() == S.SHOPPING
        assert harness.wallet.settlements == {}

    def test_unknown_session(self, found_batch):
        harness = Harness(found_batch)

        with pytest.raises(PaymentSessionNotFound):
            harness.coordinator.verify_otp("nope", "12345", "250788000000")

    def test_other_shopper_session(self, found_batch):
        harness = Harness(found_batch)
        session = harness.begin()

        with pytest.raises(PaymentSessionNotFound):
            harness.coordinator.verify_otp(session.session_key, harness.channel.last_code, "2507", 99)


# ---------------------------------------------------------------------------
# Step 4b + 5
# ---------------------------------------------------------------------------


class TestPolling:
    def test_success_on_last_attempt_settles(self, found_batch):
        harness = Harness(found_batch, reserved="5000", statuses=[PENDING] * 29 + [SUCCESSFUL])
        session = harness.verified()

        record = harness.coordinator.poll(session.session_key)

        assert record.debit == Decimal("1500.00")
        assert record.refund_amount == Decimal("1000.00")
        assert record.replayed is False
        assert harness.wallet.reserved == Decimal("3500.00")
        assert harness.current_status() == S.ON_THE_WAY
        assert [h[2] for h in harness.batches.history] == [S.PAID, S.ON_THE_WAY]
        stored = harness.session(session.session_key)
        assert stored.state == SessionState.SETTLED
        assert stored.poll_attempts == 30
        assert stored.transaction_id == record.transaction_id

    def test_refund_is_scheduled_for_shortfall(self, found_batch):
        harness = Harness(found_batch, statuses=[SUCCESSFUL])
        session = harness.verified()

        harness.coordinator.poll(session.session_key)

        (refund,) = harness.wallet.refunds
        assert refund.amount == Decimal("1000.00")
        assert refund.customer_id == "customer-1"
        assert refund.idempotency_key == f"refund:{session.session_key}"
        assert "Not found: A x 1." in refund.reason
        event_types = [type(event) for event in harness.sessions.events]
        assert PaymentSettled in event_types
        assert RefundScheduled in event_types

    def test_no_refund_when_everything_found(self, make_sub_order, make_batch):
        batch = make_batch(make_sub_order(lines=[("A", "1000", "2")], status=S.SHOPPING), shopper_id=7)
        batch = state_machine.toggle_item(batch, batch.items()[0].id, True).batch
        harness = Harness(batch, statuses=[SUCCESSFUL])
        session = harness.verified()

        record = harness.coordinator.poll(session.session_key)

        assert record.refund_id is None
        assert harness.wallet.refunds == []
        assert RefundScheduled not in [type(event) for event in harness.sessions.events]

    def test_pending_for_every_attempt_times_out(self, found_batch):
        harness = Harness(found_batch, statuses=[PENDING] * 30)
        session = harness.verified()

        with pytest.raises(TransferTimeout) as exc_info:
            harness.coordinator.poll(session.session_key)

        assert exc_info.value.context["attempts"] == 30
        assert harness.gateway.status_calls == 30
        assert harness.session(session.session_key).state == SessionState.TIMED_OUT
        assert harness.current_status() == S.SHOPPING
        assert harness.wallet.reserved == Decimal("5000")

    def test_failed_transfer(self, found_batch):
        harness = Harness(found_batch, statuses=[PENDING, FAILED])
        session = harness.verified()

        with pytest.raises(TransferFailed):
            harness.coordinator.poll(session.session_key)

        assert harness.session(session.session_key).state == SessionState.FAILED
        assert harness.current_status() == S.SHOPPING
        assert harness.wallet.settlements == {}
        assert any(isinstance(event, PaymentAborted) for event in harness.sessions.events)

    def test_transient_errors_are_retried(self, found_batch):
        error = MobileMoneyGatewayError("timeout")
        harness = Harness(found_batch, statuses=[error, error, PENDING, SUCCESSFUL])
        session = harness.verified()

        record = harness.coordinator.poll(session.session_key)

        assert record.debit == Decimal("1500.00")
        assert harness.session(session.session_key).poll_attempts == 4

    def test_errors_for_every_attempt_time_out(self, found_batch):
        harness = Harness(found_batch, statuses=[MobileMoneyGatewayError("down")] * 30)
        session = harness.verified()

        with pytest.raises(TransferTimeout) as exc_info:
            harness.coordinator.poll(session.session_key)

        assert exc_info.value.context["last_error"] == "down"

    def test_malformed_status_reply_is_retried(self, found_batch):
        replies = [
            httpx.Response(200, text="<html>gateway busy</html>"),
            httpx.Response(200, json={"status": "SUCCESSFUL"}),
        ]

        def momo(request):
            path = request.url.path
            if path == "/disbursement/token/":
                return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})
            if path == "/disbursement/v1_0/transfer":
                return httpx.Response(202)
            return replies.pop(0)

        gateway = MomoGateway(
            base_url="https://momo.test",
            subscription_key="sub-key",
            api_user="api-user",
            api_key="api-key",
            client=httpx.Client(base_url="https://momo.test", transport=httpx.MockTransport(momo)),
            cache=cache,
        )
        harness = Harness(found_batch, gateway=gateway)
        session = harness.verified()

        record = harness.coordinator.poll(session.session_key)

        assert record.debit == Decimal("1500.00")
        stored = harness.session(session.session_key)
        assert stored.state == SessionState.SETTLED
        assert stored.poll_attempts == 2

    def test_poll_requires_started_transfer(self, found_batch):
        harness = Harness(found_batch)
        session = harness.begin()

        with pytest.raises(PaymentSessionNotFound):
            harness.coordinator.poll(session.session_key)


class TestCancellation:
    def test_cancel_while_pending(self, found_batch):
        harness = Harness(found_batch, statuses=[PENDING] * 30)
        session = harness.verified()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(PaymentCancelled):
            harness.coordinator.poll(session.session_key, token)

        assert harness.gateway.status_calls == 1
        assert harness.session(session.session_key).state == SessionState.CANCELLED
        assert harness.current_status() == S.SHOPPING
        assert harness.wallet.settlements == {}

    def test_success_wins_over_cancellation(self, found_batch):
        harness = Harness(found_batch, statuses=[SUCCESSFUL])
        session = harness.verified()
        token = CancellationToken()
        token.cancel()

        record = harness.coordinator.poll(session.session_key, token)

        assert record.debit == Decimal("1500.00")
        assert harness.session(session.session_key).state == SessionState.SETTLED

    def test_cancel_before_verification_ends_session(self, found_batch):
        harness = Harness(found_batch)
        session = harness.begin()

        cancelled = harness.coordinator.cancel(session.session_key, 7)

        assert cancelled.state == SessionState.CANCELLED
        assert harness.begin().state == SessionState.AWAITING_OTP

    def test_cancel_during_transfer_is_flagged(self, found_batch):
        harness = Harness(found_batch)
        session = harness.verified()

        flagged = harness.coordinator.cancel(session.session_key)

        assert flagged.state == SessionState.TRANSFER_PENDING
        assert flagged.cancel_requested is True

    def test_cancel_after_settlement_is_a_noop(self, found_batch):
        harness = Harness(found_batch, statuses=[SUCCESSFUL])
        session = harness.verified()
        harness.coordinator.poll(session.session_key)

        result = harness.coordinator.cancel(session.session_key)

        assert result.state == SessionState.SETTLED


class TestStalledTransfer:
    """A pending transfer whose poll loop is gone is closed on the next begin or cancel."""

    def test_next_begin_times_out_stalled_transfer(self, found_batch):
        harness = Harness(found_batch, statuses=[PENDING])
        first = harness.verified()
        harness.clock.advance(61)

        second = harness.begin()

        stale = harness.session(first.session_key)
        assert stale.state == SessionState.TIMED_OUT
        assert stale.failure_reason == "poll_stalled"
        assert second.state == SessionState.AWAITING_OTP
        assert harness.gateway.status_calls == 1
        assert len(harness.channel.deliveries) == 2

    def test_recent_transfer_still_conflicts(self, found_batch):
        harness = Harness(found_batch, statuses=[PENDING])
        harness.verified()
        harness.clock.advance(30)

        with pytest.raises(ConcurrentSessionConflict):
            harness.begin()

        assert harness.gateway.status_calls == 0

    def test_stalled_transfer_that_succeeded_is_settled(self, found_batch):
        harness = Harness(found_batch, statuses=[SUCCESSFUL])
        session = harness.verified()
        harness.clock.advance(61)

        result = harness.coordinator.cancel(session.session_key, 7)

        assert result.state == SessionState.SETTLED
        assert harness.wallet.reserved == Decimal("3500.00")
        assert harness.current_status() == S.ON_THE_WAY

    def test_stalled_transfer_that_failed(self, found_batch):
        harness = Harness(found_batch, statuses=[FAILED])
        session = harness.verified()
        harness.clock.advance(61)

        result = harness.coordinator.cancel(session.session_key, 7)

        assert result.state == SessionState.FAILED
        assert result.failure_reason == "transfer_failed"
        assert harness.wallet.settlements == {}

    def test_gateway_error_on_final_check_times_out(self, found_batch):
        harness = Harness(found_batch, statuses=[MobileMoneyGatewayError("down")])
        session = harness.verified()
        harness.clock.advance(61)

        result = harness.coordinator.cancel(session.session_key, 7)

        assert result.state == SessionState.TIMED_OUT
        assert harness.begin().state == SessionState.AWAITING_OTP


class TestSettlement:
    def test_settlement_is_applied_once(self, found_batch):
        harness = Harness(found_batch, statuses=[SUCCESSFUL])
        session = harness.verified()
        first = harness.coordinator.poll(session.session_key)

        again = harness.coordinator.settle(session.session_key)
        polled = harness.coordinator.poll(session.session_key)

        assert again.replayed is True
        assert polled.replayed is True
        assert again.transaction_id == first.transaction_id
        assert harness.wallet.reserved == Decimal("3500.00")
        assert len(harness.batches.history) == 2

    def test_reserve_drained_mid_protocol_is_inconsistent(self, found_batch):
        harness = Harness(found_batch, statuses=[SUCCESSFUL])
        session = harness.verified()
        harness.wallet.reserved = Decimal("100")

        with pytest.raises(SettlementInconsistency) as exc_info:
            harness.coordinator.poll(session.session_key)

        assert exc_info.value.context["reason"] == "insufficient_reserve"
        assert harness.current_status() == S.SHOPPING
        assert harness.batches.history == []

    def test_settling_an_unstarted_session(self, found_batch):
        harness = Harness(found_batch)
        session = harness.begin()

        with pytest.raises(SettlementInconsistency):
            harness.coordinator.settle(session.session_key)

    def test_restaurant_fast_path(self, make_sub_order, make_batch):
        sub = make_sub_order(kind=Restaurant("resto-1"), lines=[("Meal", "4500", "1")])
        batch = make_batch(sub, shopper_id=7)
        harness = Harness(batch, reserved="4500", statuses=[SUCCESSFUL])
        session = harness.verified()

        record = harness.coordinator.poll(session.session_key)

        assert record.debit == Decimal("4500.00")
        assert record.refund_id is None
        assert [h[1:] for h in harness.batches.history] == [
            (S.ACCEPTED, S.PAID),
            (S.PAID, S.ON_THE_WAY),
        ]
