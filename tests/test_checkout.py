from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from services.payments.checkout import (
    CallbackCheckoutAdapter,
    CheckoutAuthorized,
    CheckoutDismissed,
    CheckoutFailed,
    parse_checkout_outcome,
)
from services.payments.order_service import OrderHandle


def _handle(gateway_order_id: str = "order_abc") -> OrderHandle:
    return OrderHandle(
        order_id=uuid.uuid4(),
        gateway_order_id=gateway_order_id,
        amount_minor=2900,
        amount=Decimal("29.00"),
        currency="USD",
        expires_at=datetime.now(timezone.utc),
    )


def test_parse_authorized_payload() -> None:
    outcome = parse_checkout_outcome(
        {
            "razorpay_order_id": "order_abc",
            "razorpay_payment_id": " pay_1 ",
            "razorpay_signature": "sig",
        }
    )
    assert outcome == CheckoutAuthorized(order_id="order_abc", payment_id="pay_1", signature="sig")


def test_parse_failed_payload() -> None:
    outcome = parse_checkout_outcome(
        {
            "error": {
                "code": "BAD_REQUEST_ERROR",
                "description": "Card declined",
                "metadata": {"payment_id": "pay_2", "order_id": "order_abc"},
            }
        }
    )
    assert outcome == CheckoutFailed(reason="Card declined", code="BAD_REQUEST_ERROR", payment_id="pay_2")


def test_parse_dismissal_payloads() -> None:
    assert parse_checkout_outcome({"dismissed": True}) == CheckoutDismissed()
    assert parse_checkout_outcome({"expired": True}) == CheckoutDismissed(expired=True)


def test_parse_rejects_unknown_payload() -> None:
    with pytest.raises(ValueError):
        parse_checkout_outcome({"status": "ok"})


def test_callback_adapter_resolves_open_checkout() -> None:
    adapter = CallbackCheckoutAdapter(timeout_seconds=5)

    async def scenario():
        waiter = asyncio.create_task(adapter.open(_handle()))
        await asyncio.sleep(0)
        assert adapter.authorize("order_abc", "pay_1", "sig")
        assert not adapter.fail("order_abc", "too late")
        return await waiter

    outcome = asyncio.run(scenario())
    assert isinstance(outcome, CheckoutAuthorized)
    assert outcome.payment_id == "pay_1"


def test_callback_adapter_keeps_early_outcome() -> None:
    adapter = CallbackCheckoutAdapter(timeout_seconds=5)
    assert adapter.dismiss("order_abc")
    assert not adapter.fail("order_abc", "second outcome")

    outcome = asyncio.run(adapter.open(_handle()))
    assert outcome == CheckoutDismissed()


def test_callback_adapter_times_out_as_expired() -> None:
    adapter = CallbackCheckoutAdapter(timeout_seconds=0.01)
    outcome = asyncio.run(adapter.open(_handle()))
    assert outcome == CheckoutDismissed(expired=True)


def test_callback_adapter_drops_unclaimed_early_outcomes() -> None:
    now = [100.0]
    adapter = CallbackCheckoutAdapter(timeout_seconds=30, clock=lambda: now[0])
    assert adapter.dismiss("order_never_opened")

    now[0] += 31
    assert adapter.fail("order_later", "card declined")
    assert "order_never_opened" not in adapter._early

    outcome = asyncio.run(adapter.open(_handle("order_later")))
    assert outcome == CheckoutFailed(reason="card declined")
    assert adapter._early == {}


def test_callback_adapter_times_out_after_stale_early_outcome() -> None:
    now = [0.0]
    adapter = CallbackCheckoutAdapter(timeout_seconds=0.01, clock=lambda: now[0])
    assert adapter.dismiss("order_abc")
    now[0] += 1

    outcome = asyncio.run(adapter.open(_handle()))
    assert outcome == CheckoutDismissed(expired=True)
