"""DRF exception handler producing one error envelope.

Both DRF errors (auth, validation, throttling) and domain errors are
rendered as::

    {
        "type": "client_error" | "server_error",
        "errors": [{"code": ..., "detail": ..., "attr": ...}],
        "context": {...}
    }

Domain errors map to a status code by ``kind``; their ``context`` is
passed through so clients can show the sub-order, amount or transition
that failed.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from shared.domain.exceptions import DomainError

logger = structlog.get_logger(__name__)

STATUS_BY_KIND: Dict[str, int] = {
    "batch_not_found": status.HTTP_404_NOT_FOUND,
    "sub_order_not_found": status.HTTP_404_NOT_FOUND,
    "item_not_found": status.HTTP_404_NOT_FOUND,
    "payment_session_not_found": status.HTTP_404_NOT_FOUND,
    "wallet_not_found": status.HTTP_404_NOT_FOUND,
    "invoice_not_found": status.HTTP_404_NOT_FOUND,
    "invalid_transition": status.HTTP_400_BAD_REQUEST,
    "invalid_proof_image": status.HTTP_400_BAD_REQUEST,
    "invalid_otp": status.HTTP_400_BAD_REQUEST,
    "proof_required": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "insufficient_reserve": status.HTTP_409_CONFLICT,
    "concurrent_session_conflict": status.HTTP_409_CONFLICT,
    "payment_cancelled": status.HTTP_409_CONFLICT,
    "settlement_inconsistency": status.HTTP_409_CONFLICT,
    "transfer_failed": status.HTTP_502_BAD_GATEWAY,
    "gateway_error": status.HTTP_502_BAD_GATEWAY,
    "transfer_timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def _envelope(
    status_code: int, errors: List[Dict[str, Any]], context: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "type": "server_error" if status_code >= 500 else "client_error",
        "errors": errors,
    }
    if context:
        body["context"] = _jsonable(context)
    return body


def _flatten(detail: Any, attr: Optional[str] = None) -> List[Dict[str, Any]]:
    if isinstance(detail, dict):
        errors: List[Dict[str, Any]] = []
        for key, value in detail.items():
            name = key if attr is None else f"{attr}.{key}"
            errors.extend(_flatten(value, None if key == "non_field_errors" else name))
        return errors
    if isinstance(detail, list):
        errors = []
        for value in detail:
            errors.extend(_flatten(value, attr))
        return errors
    return [{"code": getattr(detail, "code", "error"), "detail": str(detail), "attr": attr}]


def exception_handler(exc: Exception, context: Dict[str, Any]) -> Optional[Response]:
    if isinstance(exc, DomainError):
        status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)
        logger.warning("api.domain_error", kind=exc.kind, status_code=status_code, error=str(exc))
        return Response(
            _envelope(
                status_code,
                [{"code": exc.kind, "detail": str(exc), "attr": None}],
                exc.context,
            ),
            status=status_code,
        )

    response = drf_exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, APIException):
        errors = _flatten(exc.detail)
    elif isinstance(response.data, dict) and "detail" in response.data:
        errors = _flatten(response.data["detail"])
    else:
        errors = _flatten(response.data)
    response.data = _envelope(response.status_code, errors)
    return response
