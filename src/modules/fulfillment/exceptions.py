"""Fulfillment domain exceptions.

Raised by the state machine, router and proof gate when business rules
are violated.  The API layer renders them through the shared error
envelope (``modules.core.exceptions``); ``kind`` picks the status code.
"""

from __future__ import annotations

from shared.domain.exceptions import DomainError


class FulfillmentError(DomainError):
    kind = "fulfillment_error"


class BatchNotFound(FulfillmentError):
    """The batch does not exist or is not assigned to this shopper."""

    kind = "batch_not_found"


class SubOrderNotFound(FulfillmentError):
    """The sub-order (or shop) is not part of this batch."""

    kind = "sub_order_not_found"


class ItemNotFound(FulfillmentError):
    """The item is not part of this batch."""

    kind = "item_not_found"


class InvalidTransition(FulfillmentError):
    """An illegal status change was attempted."""

    kind = "invalid_transition"


class ProofRequired(FulfillmentError):
    """Delivery is blocked until proof of invoice is recorded."""

    kind = "proof_required"


class InvalidProofImage(FulfillmentError):
    """The supplied proof is not an acceptable image."""

    kind = "invalid_proof_image"
