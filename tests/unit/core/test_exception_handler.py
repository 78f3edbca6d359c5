"""Unit tests for the API error envelope."""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from rest_framework import exceptions, status

from modules.core.exceptions import exception_handler
from modules.fulfillment.exceptions import BatchNotFound, ProofRequired
from modules.payments.exceptions import InsufficientReserve, TransferTimeout

pytestmark = pytest.mark.unit


class TestDomainErrors:
    def test_insufficient_reserve_is_conflict_with_context(self):
        sub_order_id = uuid4()
        exc = InsufficientReserve(
            sub_order_id=sub_order_id, required=Decimal("1500.00"), reserved=Decimal("900.00")
        )

        response = exception_handler(exc, {})

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["type"] == "client_error"
        assert response.data["errors"] == [
            {"code": "insufficient_reserve", "detail": str(exc), "attr": None}
        ]
        assert response.data["context"] == {
            "sub_order_id": str(sub_order_id),
            "required": "1500.00",
            "reserved": "900.00",
        }

    def test_proof_required_is_unprocessable(self):
        response = exception_handler(ProofRequired(sub_order_id=uuid4()), {})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.data["errors"][0]["code"] == "proof_required"

    def test_not_found_without_context(self):
        response = exception_handler(BatchNotFound(), {})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "context" not in response.data

    def test_timeout_is_server_error(self):
        response = exception_handler(TransferTimeout(attempts=30), {})

        assert response.status_code == status.HTTP_504_GATEWAY_TIMEOUT
        assert response.data["type"] == "server_error"
        assert response.data["context"] == {"attempts": 30}


class TestDrfErrors:
    def test_validation_error_keeps_field_name(self):
        exc = exceptions.ValidationError({"found": ["This field is required."]}, code="required")

        response = exception_handler(exc, {})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["errors"] == [
            {"code": "required", "detail": "This field is required.", "attr": "found"}
        ]

    def test_not_authenticated(self):
        response = exception_handler(exceptions.NotAuthenticated(), {})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data["errors"][0]["code"] == "not_authenticated"

    def test_unhandled_exception_is_left_to_django(self):
        assert exception_handler(ValueError("boom"), {}) is None
