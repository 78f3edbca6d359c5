"""Payment Session value object and cancellation tokens.

A session is bound to exactly one sub-order and lives from OTP issuance
until settlement, cancellation or a terminal failure.  The one-time code
is never stored; only a digest salted with the session key is kept.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from modules.payments.constants import ACTIVE_STATES, SessionState


def generate_otp(length: int = 5) -> str:
    """Numeric code of exactly ``length`` digits (no leading zero)."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


def generate_session_key() -> str:
    return secrets.token_urlsafe(24)


def digest_otp(session_key: str, code: str) -> str:
    return hashlib.sha256(f"{session_key}:{code}".encode()).hexdigest()


@dataclass(frozen=True)
class PaymentSession:
    session_key: str
    batch_id: UUID
    sub_order_id: UUID
    shopper_id: int
    customer_id: str
    amount: Decimal
    original_amount: Decimal
    currency: str
    otp_digest: str
    otp_expires_at: datetime
    id: UUID = field(default_factory=uuid4)
    state: str = SessionState.AWAITING_OTP
    reference_id: Optional[str] = None
    transfer_status: Optional[str] = None
    poll_attempts: int = 0
    cancel_requested: bool = False
    failure_reason: str = ""
    transaction_id: Optional[UUID] = None
    refund_id: Optional[UUID] = None
    last_polled_at: Optional[datetime] = None

    @classmethod
    def issue(
        cls,
        code: str,
        *,
        batch_id: UUID,
        sub_order_id: UUID,
        shopper_id: int,
        customer_id: str,
        amount: Decimal,
        original_amount: Decimal,
        currency: str,
        now: datetime,
        ttl_seconds: int,
    ) -> PaymentSession:
        key = generate_session_key()
        return cls(
            session_key=key,
            batch_id=batch_id,
            sub_order_id=sub_order_id,
            shopper_id=shopper_id,
            customer_id=customer_id,
            amount=amount,
            original_amount=original_amount,
            currency=currency,
            otp_digest=digest_otp(key, code),
            otp_expires_at=now + timedelta(seconds=ttl_seconds),
        )

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def shortfall(self) -> Decimal:
        return max(Decimal("0"), self.original_amount - self.amount)

    @property
    def key_prefix(self) -> str:
        return self.session_key[:6]

    def otp_expired(self, now: datetime) -> bool:
        return self.state == SessionState.AWAITING_OTP and now >= self.otp_expires_at

    def otp_matches(self, code: str) -> bool:
        return hmac.compare_digest(digest_otp(self.session_key, code), self.otp_digest)

    def transfer_stalled(self, now: datetime, after_seconds: float) -> bool:
        """True when no poll has touched a pending transfer for ``after_seconds``."""
        if self.state != SessionState.TRANSFER_PENDING or self.last_polled_at is None:
            return False
        return (now - self.last_polled_at).total_seconds() >= after_seconds

    # Copy-on-write state changes

    def transfer_started(self, now: Optional[datetime] = None) -> PaymentSession:
        return replace(self, state=SessionState.TRANSFER_PENDING, last_polled_at=now)

    def with_reference(self, reference_id: str) -> PaymentSession:
        return replace(self, reference_id=reference_id)

    def polled(
        self, attempt: int, status: Optional[str], now: Optional[datetime] = None
    ) -> PaymentSession:
        return replace(
            self,
            poll_attempts=attempt,
            transfer_status=status or self.transfer_status,
            last_polled_at=now or self.last_polled_at,
        )

    def request_cancel(self) -> PaymentSession:
        return replace(self, cancel_requested=True)

    def settled(self, transaction_id: UUID, refund_id: Optional[UUID]) -> PaymentSession:
        return replace(
            self,
            state=SessionState.SETTLED,
            transaction_id=transaction_id,
            refund_id=refund_id,
        )

    def ended(self, state: str, reason: str = "") -> PaymentSession:
        return replace(self, state=state, failure_reason=reason)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancellationToken:
    """In-process token; ``wait`` returns early once cancelled."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        return self._event.wait(seconds)


class StoredCancellationToken:
    """Token backed by a committed flag, for polls running in a worker.

    ``is_requested`` must read the latest committed value.
    """

    def __init__(
        self,
        is_requested: Callable[[], bool],
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._is_requested = is_requested
        self._sleep = sleep

    def is_cancelled(self) -> bool:
        return self._is_requested()

    def wait(self, seconds: float) -> bool:
        if seconds > 0:
            self._sleep(seconds)
        return self.is_cancelled()
