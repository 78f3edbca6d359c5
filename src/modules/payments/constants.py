"""Payment protocol constants."""

from django.db import models


class TransferStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SUCCESSFUL = "SUCCESSFUL", "Successful"
    FAILED = "FAILED", "Failed"


class SessionState(models.TextChoices):
    AWAITING_OTP = "awaiting_otp", "Awaiting OTP"
    TRANSFER_PENDING = "transfer_pending", "Transfer pending"
    SETTLED = "settled", "Settled"
    CANCELLED = "cancelled", "Cancelled"
    FAILED = "failed", "Failed"
    TIMED_OUT = "timed_out", "Timed out"
    EXPIRED = "expired", "Expired"


ACTIVE_STATES: set[str] = {SessionState.AWAITING_OTP, SessionState.TRANSFER_PENDING}

TERMINAL_STATES: set[str] = {
    SessionState.SETTLED,
    SessionState.CANCELLED,
    SessionState.FAILED,
    SessionState.TIMED_OUT,
    SessionState.EXPIRED,
}

PAYMENT_DESCRIPTION = "Payment for found order items (excluding service and delivery fees)"
