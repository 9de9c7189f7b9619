"""Client for the payment provider's hosted-checkout HTTP API.

Two calls are used: create a checkout session (``POST /api/checkouts``) and
look one up (``GET /api/checkouts/{id}``). Each request has a bounded timeout
and is retried a small number of times with exponential backoff and jitter
on timeouts, connection errors, 429 and 5xx answers. Checkout creation sends
an ``Idempotency-Key`` so a retried POST cannot open a second session.
"""
from dataclasses import dataclass
from typing import Any, Optional, Sequence
import asyncio
import json
import logging
import random

import httpx

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    status_code = 502
    retry_recommended = False


class ProviderRequestError(ProviderError):
    """The provider rejected the request or answered with something unusable."""


class ProviderUnavailableError(ProviderError):
    """Network failure or 5xx from the provider after all retries."""

    status_code = 503
    retry_recommended = True


class ProviderTimeoutError(ProviderUnavailableError):
    status_code = 504


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    redirect_url: Optional[str]
    status: Optional[str] = None


class PaymentProvider:
    """Interface the routes depend on; tests substitute their own implementation."""

    async def create_checkout(
        self,
        amount: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        failure_url: str,
        order_reference: str,
        items: Sequence[Any],
        metadata: Optional[dict] = None,
    ) -> CheckoutSession:
        raise NotImplementedError

    async def get_checkout(self, checkout_id: str) -> CheckoutSession:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def encode_metadata(order_reference: str, items: Sequence[Any], extra: Optional[dict] = None) -> dict:
    """Flatten order metadata for the provider.

    The provider only stores flat string values, so line items travel as a
    compact JSON string. This is the only place they are stringified.
    """
    metadata = {k: str(v) for k, v in (extra or {}).items() if v is not None}
    metadata["order_reference"] = order_reference
    metadata["items"] = json.dumps(
        [
            {"id": item.product_id, "name": item.name, "quantity": item.quantity, "price": item.unit_price}
            for item in items
        ],
        separators=(",", ":"),
    )
    return metadata


class YocoClient(PaymentProvider):
    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://payments.yoco.com",
        timeout: float = 15.0,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {secret_key}"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        for attempt in range(self.max_attempts):
            last_attempt = attempt == self.max_attempts - 1
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                logger.warning("provider %s %s timed out (attempt %d/%d)", method, path, attempt + 1, self.max_attempts)
                if last_attempt:
                    raise ProviderTimeoutError(f"provider timed out: {e}") from e
            except httpx.TransportError as e:
                logger.warning(
                    "provider %s %s failed: %s (attempt %d/%d)", method, path, e, attempt + 1, self.max_attempts
                )
                if last_attempt:
                    raise ProviderUnavailableError(f"provider unreachable: {e}") from e
            else:
                if response.status_code == 429 or response.status_code >= 500:
                    logger.warning(
                        "provider %s %s answered %d (attempt %d/%d)",
                        method, path, response.status_code, attempt + 1, self.max_attempts,
                    )
                    if last_attempt:
                        raise ProviderUnavailableError(f"provider answered {response.status_code}")
                elif response.status_code >= 400:
                    logger.error("provider rejected %s %s: %d %s", method, path, response.status_code, response.text[:500])
                    raise ProviderRequestError(f"provider rejected request with {response.status_code}")
                else:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise ProviderRequestError("provider answered with invalid JSON") from e

            delay = self.backoff_base * (2 ** attempt) + random.uniform(0, self.backoff_base)
            await asyncio.sleep(delay)

        raise ProviderUnavailableError("provider retries exhausted")

    @staticmethod
    def _session_from(data: Any) -> CheckoutSession:
        if not isinstance(data, dict) or not data.get("id"):
            raise ProviderRequestError("provider response has no checkout id")
        return CheckoutSession(id=str(data["id"]), redirect_url=data.get("redirectUrl"), status=data.get("status"))

    async def create_checkout(
        self,
        amount: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        failure_url: str,
        order_reference: str,
        items: Sequence[Any],
        metadata: Optional[dict] = None,
    ) -> CheckoutSession:
        body = {
            "amount": amount,
            "currency": currency,
            "successUrl": success_url,
            "cancelUrl": cancel_url,
            "failureUrl": failure_url,
            "externalId": order_reference,
            "metadata": encode_metadata(order_reference, items, metadata),
        }
        data = await self._request("POST", "/api/checkouts", json=body, headers={"Idempotency-Key": order_reference})
        session = self._session_from(data)
        if not session.redirect_url:
            raise ProviderRequestError("provider response has no redirectUrl")
        logger.info("provider checkout %s created for order %s", session.id, order_reference)
        return session

    async def get_checkout(self, checkout_id: str) -> CheckoutSession:
        data = await self._request("GET", f"/api/checkouts/{checkout_id}")
        return self._session_from(data)
