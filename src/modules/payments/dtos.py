"""Payment session DTOs.

The OTP digest and the cancel flag never leave the service layer; the
code itself is only ever handed to the OTP channel.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from modules.payments.interfaces import SettlementRecord
from modules.payments.session import PaymentSession


class PaymentSessionOutputDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    session_key: str
    batch_id: UUID
    sub_order_id: UUID
    state: str
    amount: Decimal
    original_amount: Decimal
    refund_amount: Decimal
    currency: str
    otp_expires_at: datetime
    reference_id: Optional[str]
    transfer_status: Optional[str]
    poll_attempts: int
    cancel_requested: bool
    failure_reason: str
    transaction_id: Optional[UUID]
    refund_id: Optional[UUID]

    @classmethod
    def from_entity(cls, session: PaymentSession) -> PaymentSessionOutputDTO:
        return cls(
            id=session.id,
            session_key=session.session_key,
            batch_id=session.batch_id,
            sub_order_id=session.sub_order_id,
            state=session.state,
            amount=session.amount,
            original_amount=session.original_amount,
            refund_amount=session.shortfall,
            currency=session.currency,
            otp_expires_at=session.otp_expires_at,
            reference_id=session.reference_id,
            transfer_status=session.transfer_status,
            poll_attempts=session.poll_attempts,
            cancel_requested=session.cancel_requested,
            failure_reason=session.failure_reason,
            transaction_id=session.transaction_id,
            refund_id=session.refund_id,
        )


class SettlementOutputDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_id: UUID
    debit: Decimal
    refund_id: Optional[UUID]
    refund_amount: Decimal
    replayed: bool

    @classmethod
    def from_entity(cls, record: SettlementRecord) -> SettlementOutputDTO:
        return cls(**vars(record))
