"""Test doubles shared by the payment tests."""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Mapping, Optional

from services.payments.gateway import GatewayOrder, PaymentGatewayError
from services.payments.verifier import compute_payment_signature

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "test_key_secret"
TEST_WEBHOOK_SECRET = "test_webhook_secret"


class FakeGateway:
    """In-memory gateway that records every order request."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[PaymentGatewayError] = None
        self.echo_amount: Optional[int] = None
        self.echo_currency: Optional[str] = None

    async def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Mapping[str, str],
    ) -> GatewayOrder:
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": dict(notes)})
        if self.error is not None:
            raise self.error
        return GatewayOrder(
            order_id=f"order_{uuid.uuid4().hex[:14]}",
            amount=self.echo_amount if self.echo_amount is not None else amount,
            currency=self.echo_currency or currency,
            receipt=receipt,
            status="created",
        )


def sign(gateway_order_id: str, payment_id: str, secret: str = TEST_KEY_SECRET) -> str:
    return compute_payment_signature(gateway_order_id, payment_id, secret)
