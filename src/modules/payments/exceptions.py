"""Payment domain exceptions.

Raised by the payment coordinator.  Every abort before settlement leaves
the wallet and the sub-order untouched.
"""

from __future__ import annotations

from shared.domain.exceptions import DomainError


class PaymentError(DomainError):
    kind = "payment_error"


class InsufficientReserve(PaymentError):
    """The reserved wallet balance cannot cover the found items."""

    kind = "insufficient_reserve"


class InvalidOtp(PaymentError):
    """The submitted one-time code does not match, or is no longer valid."""

    kind = "invalid_otp"


class TransferFailed(PaymentError):
    """The mobile-money transfer was rejected."""

    kind = "transfer_failed"


class TransferTimeout(PaymentError):
    """The mobile-money transfer was still pending after the last poll."""

    kind = "transfer_timeout"


class ConcurrentSessionConflict(PaymentError):
    """A payment session is already in progress for this sub-order."""

    kind = "concurrent_session_conflict"


class PaymentSessionNotFound(PaymentError):
    """The payment session does not exist or is no longer active."""

    kind = "payment_session_not_found"


class PaymentCancelled(PaymentError):
    """The operator cancelled the payment before the transfer completed."""

    kind = "payment_cancelled"


class WalletNotFound(PaymentError):
    """The shopper has no wallet."""

    kind = "wallet_not_found"


class SettlementInconsistency(PaymentError):
    """Settlement could not be applied as one unit."""

    kind = "settlement_inconsistency"


class MobileMoneyGatewayError(PaymentError):
    """Transport or protocol error talking to the mobile-money provider."""

    kind = "gateway_error"
