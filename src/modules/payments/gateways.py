"""Mobile-money gateway clients.

``MomoGateway`` talks to the MTN MoMo disbursement API over ``httpx``:

- ``POST /disbursement/token/`` (Basic auth + subscription key) returns a
  bearer token, cached until five minutes before it expires.
- ``POST /disbursement/v1_0/transfer`` with an ``X-Reference-Id`` starts a
  transfer; the provider answers ``202 Accepted``.
- ``GET /disbursement/v1_0/transfer/{reference_id}`` reports its status.

``SandboxMobileMoneyGateway`` is used when no credentials are configured;
every transfer it starts is immediately ``SUCCESSFUL``.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
import structlog
from django.conf import settings
from django.core.cache import cache as default_cache

from modules.payments.constants import TransferStatus
from modules.payments.exceptions import MobileMoneyGatewayError
from modules.payments.interfaces import IMobileMoneyGateway

logger = structlog.get_logger(__name__)

TOKEN_CACHE_KEY = "momo:disbursement:token"
TOKEN_EXPIRY_BUFFER_SECONDS = 300


class MomoGateway(IMobileMoneyGateway):
    def __init__(
        self,
        base_url: str,
        subscription_key: str,
        api_user: str,
        api_key: str,
        target_environment: str = "sandbox",
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
        cache: Any = None,
    ) -> None:
        self._subscription_key = subscription_key
        self._api_user = api_user
        self._api_key = api_key
        self._target_environment = target_environment
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._cache = cache if cache is not None else default_cache

    # ------------------------------------------------------------------
    # Token
    # ------------------------------------------------------------------

    def _access_token(self) -> str:
        token = self._cache.get(TOKEN_CACHE_KEY)
        if token:
            return token

        response = self._request(
            "POST",
            "/disbursement/token/",
            auth=(self._api_user, self._api_key),
            headers={"Ocp-Apim-Subscription-Key": self._subscription_key},
        )
        try:
            data = response.json()
            token = data["access_token"]
            ttl = int(data.get("expires_in", 3600)) - TOKEN_EXPIRY_BUFFER_SECONDS
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise MobileMoneyGatewayError("MoMo token reply is malformed.") from exc
        if ttl > 0:
            self._cache.set(TOKEN_CACHE_KEY, token, ttl)
        logger.info("momo.token_refreshed", ttl=ttl)
        return token

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token()}",
            "X-Target-Environment": self._target_environment,
            "Ocp-Apim-Subscription-Key": self._subscription_key,
        }

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise MobileMoneyGatewayError(
                f"MoMo {method} {url} answered HTTP {exc.response.status_code}.",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise MobileMoneyGatewayError(f"MoMo {method} {url} failed: {exc}.") from exc
        return response

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def initiate_transfer(
        self, amount: Decimal, currency: str, payer_code: str, external_id: str
    ) -> str:
        reference_id = str(uuid.uuid4())
        response = self._request(
            "POST",
            "/disbursement/v1_0/transfer",
            headers={**self._headers(), "X-Reference-Id": reference_id},
            json={
                "amount": str(amount),
                "currency": currency,
                "externalId": external_id,
                "payee": {"partyIdType": "MSISDN", "partyId": payer_code},
                "payerMessage": "Payment for found order items",
                "payeeNote": "Shopper payment",
            },
        )
        if response.status_code != httpx.codes.ACCEPTED:
            raise MobileMoneyGatewayError(
                f"MoMo transfer not accepted (HTTP {response.status_code}).",
                status_code=response.status_code,
            )
        logger.info("momo.transfer_requested", reference_id=reference_id, amount=str(amount))
        return reference_id

    def get_transfer_status(self, reference_id: str) -> str:
        response = self._request(
            "GET",
            f"/disbursement/v1_0/transfer/{reference_id}",
            headers=self._headers(),
        )
        try:
            status = str(response.json().get("status", "")).upper()
        except (ValueError, AttributeError) as exc:
            raise MobileMoneyGatewayError(
                "MoMo transfer status reply is malformed.", reference_id=reference_id
            ) from exc
        if status not in TransferStatus.values:
            raise MobileMoneyGatewayError(
                f"Unknown MoMo transfer status '{status}'.", reference_id=reference_id
            )
        return status


class SandboxMobileMoneyGateway(IMobileMoneyGateway):
    """Offline gateway: every transfer succeeds."""

    def initiate_transfer(
        self, amount: Decimal, currency: str, payer_code: str, external_id: str
    ) -> str:
        reference_id = str(uuid.uuid4())
        logger.info("momo.sandbox_transfer", reference_id=reference_id, amount=str(amount))
        return reference_id

    def get_transfer_status(self, reference_id: str) -> str:
        return TransferStatus.SUCCESSFUL


def gateway_from_settings() -> IMobileMoneyGateway:
    credentials = (
        settings.MOMO_SUBSCRIPTION_KEY,
        settings.MOMO_API_USER,
        settings.MOMO_API_KEY,
    )
    if not all(credentials):
        return SandboxMobileMoneyGateway()
    return MomoGateway(
        base_url=settings.MOMO_BASE_URL,
        subscription_key=settings.MOMO_SUBSCRIPTION_KEY,
        api_user=settings.MOMO_API_USER,
        api_key=settings.MOMO_API_KEY,
        target_environment=settings.MOMO_TARGET_ENVIRONMENT,
        timeout=settings.MOMO_TIMEOUT_SECONDS,
    )
