"""Collaborator contracts consumed by the fulfillment core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID


class IProofStorage(ABC):
    """Stores proof-of-invoice images per sub-order."""

    @abstractmethod
    def store(self, sub_order_id: UUID, image: bytes) -> str:
        """Persist ``image`` and return an opaque proof reference."""
        ...

    @abstractmethod
    def has_proof(self, sub_order_id: UUID) -> bool: ...


class IInvoiceGenerator(ABC):
    """Creates the invoice of a sub-order once its payment succeeded."""

    @abstractmethod
    def generate(self, sub_order_id: UUID, proof_ref: Optional[str] = None) -> Any: ...
