"""OTP delivery channels.

The channel class is picked with the ``PAYMENT_OTP_CHANNEL`` setting.
"""

from __future__ import annotations

from typing import Any, Dict

import structlog
from django.conf import settings
from django.utils.module_loading import import_string

from modules.payments.interfaces import IOtpChannel

logger = structlog.get_logger(__name__)


class LogOtpChannel(IOtpChannel):
    """Development channel: records each delivery in the log, code masked."""

    def deliver(self, code: str, context: Dict[str, Any]) -> None:
        logger.warning(
            "payment.otp_delivered",
            otp=code,
            sub_order_id=context.get("sub_order_id"),
            expires_at=context.get("expires_at"),
        )


def otp_channel_from_settings() -> IOtpChannel:
    return import_string(settings.PAYMENT_OTP_CHANNEL)()
