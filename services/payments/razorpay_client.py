"""Razorpay Orders API helper."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from core.env import env_str
from services.payments.gateway import GatewayOrder, PaymentGatewayError

logger = logging.getLogger(__name__)

DEFAULT_RAZORPAY_API_BASE_URL = "https://api.razorpay.com"
DEFAULT_CHECKOUT_BRAND_NAME = "CYNAYD One"


def _error_message(payload: Dict[str, Any]) -> str:
    error = payload.get("error")
    if isinstance(error, dict):
        description = error.get("description") or error.get("reason")
        if description:
            return str(description)
    return str(payload.get("message") or "Razorpay request failed.")


@dataclass(slots=True)
class RazorpayClient:
    """HTTP client wrapper for the Razorpay Orders API."""

    key_id: str
    key_secret: str
    base_url: str = DEFAULT_RAZORPAY_API_BASE_URL
    timeout: float = 10.0
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    url,
                    json=json,
                    auth=(self.key_id, self.key_secret),
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.warning("Razorpay request to %s failed: %s", path, exc)
            raise PaymentGatewayError(503, f"Razorpay is unreachable: {exc}") from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"body": response.text}
            if not isinstance(payload, dict):
                payload = {"body": payload}
            logger.warning("Razorpay API error %s: %s", response.status_code, payload)
            raise PaymentGatewayError(response.status_code, _error_message(payload), payload=payload)

        try:
            data = response.json()
        except ValueError as exc:
            raise PaymentGatewayError(502, "Razorpay returned a non-JSON response.") from exc
        if not isinstance(data, dict):
            raise PaymentGatewayError(502, "Razorpay returned an unexpected response.", payload={"body": data})
        return data

    async def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Mapping[str, str],
    ) -> GatewayOrder:
        """Mint a one-time order for ``amount`` minor units."""
        logger.info("Creating Razorpay order receipt=%s amount=%s %s", receipt, amount, currency)
        data = await self._request(
            "POST",
            "/v1/orders",
            json={
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": {str(key): str(value) for key, value in notes.items()},
            },
        )
        order_id = data.get("id")
        if not order_id:
            raise PaymentGatewayError(502, "Razorpay order response is missing an id.", payload=data)
        try:
            echoed_amount = int(data.get("amount"))
        except (TypeError, ValueError) as exc:
            raise PaymentGatewayError(502, "Razorpay order response has an invalid amount.", payload=data) from exc
        return GatewayOrder(
            order_id=str(order_id),
            amount=echoed_amount,
            currency=str(data.get("currency") or "").upper(),
            receipt=data.get("receipt"),
            status=data.get("status"),
            raw=data,
        )


def get_razorpay_client() -> RazorpayClient:
    key_id = env_str("RAZORPAY_KEY_ID")
    key_secret = env_str("RAZORPAY_KEY_SECRET")
    if not key_id or not key_secret:
        raise RuntimeError("Razorpay API keys are not configured. Check RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.")
    base_url = env_str("RAZORPAY_BASE_URL", DEFAULT_RAZORPAY_API_BASE_URL) or DEFAULT_RAZORPAY_API_BASE_URL
    return RazorpayClient(key_id=key_id, key_secret=key_secret, base_url=base_url)


def get_razorpay_key_secret() -> str:
    secret = env_str("RAZORPAY_KEY_SECRET")
    if not secret:
        raise RuntimeError("Razorpay key secret is not configured.")
    return secret


def get_razorpay_webhook_secret() -> str:
    secret = env_str("RAZORPAY_WEBHOOK_SECRET")
    if not secret:
        raise RuntimeError("Razorpay webhook secret is not configured.")
    return secret


def get_checkout_brand_name() -> str:
    return env_str("CHECKOUT_BRAND_NAME", DEFAULT_CHECKOUT_BRAND_NAME) or DEFAULT_CHECKOUT_BRAND_NAME


def get_razorpay_public_config() -> dict[str, str]:
    """Expose client-safe values for the Razorpay checkout widget."""
    key_id = env_str("RAZORPAY_KEY_ID")
    if not key_id:
        raise RuntimeError("Razorpay key id is not configured.")
    return {"keyId": key_id, "brandName": get_checkout_brand_name()}


__all__ = [
    "DEFAULT_RAZORPAY_API_BASE_URL",
    "RazorpayClient",
    "get_checkout_brand_name",
    "get_razorpay_client",
    "get_razorpay_key_secret",
    "get_razorpay_public_config",
    "get_razorpay_webhook_secret",
]
