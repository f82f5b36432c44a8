from __future__ import annotations

import hashlib
import hmac

import pytest

from payment_fakes import TEST_KEY_SECRET, TEST_WEBHOOK_SECRET, sign
from services.payments.verifier import (
    REASON_INCOMPLETE,
    REASON_ORDER_MISMATCH,
    REASON_SIGNATURE_MISMATCH,
    PaymentConfirmation,
    PaymentVerifier,
    get_payment_verifier,
    verify_payment_signature,
    verify_webhook_signature,
)


def test_signature_is_hmac_of_order_and_payment() -> None:
    expected = hmac.new(TEST_KEY_SECRET.encode(), b"order_abc|pay_xyz", hashlib.sha256).hexdigest()
    assert sign("order_abc", "pay_xyz") == expected
    assert verify_payment_signature("order_abc", "pay_xyz", expected, TEST_KEY_SECRET)
    assert verify_payment_signature("order_abc", "pay_xyz", expected.upper(), TEST_KEY_SECRET)


def test_verify_accepts_matching_confirmation() -> None:
    verifier = PaymentVerifier(TEST_KEY_SECRET)
    confirmation = PaymentConfirmation("order_abc", "pay_xyz", sign("order_abc", "pay_xyz"))

    result = verifier.verify(expected_order_id="order_abc", confirmation=confirmation)

    assert result.valid
    assert result.payment_id == "pay_xyz"
    assert result.reason is None


def test_verify_rejects_tampered_signature() -> None:
    verifier = PaymentVerifier(TEST_KEY_SECRET)
    confirmation = PaymentConfirmation("order_abc", "pay_xyz", sign("order_abc", "pay_other"))

    result = verifier.verify(expected_order_id="order_abc", confirmation=confirmation)

    assert not result.valid
    assert result.reason == REASON_SIGNATURE_MISMATCH


def test_verify_rejects_confirmation_for_another_order() -> None:
    verifier = PaymentVerifier(TEST_KEY_SECRET)
    # Correctly signed, but for an order this attempt did not mint.
    confirmation = PaymentConfirmation("order_other", "pay_xyz", sign("order_other", "pay_xyz"))

    result = verifier.verify(expected_order_id="order_abc", confirmation=confirmation)

    assert not result.valid
    assert result.reason == REASON_ORDER_MISMATCH


@pytest.mark.parametrize(
    "confirmation",
    [
        PaymentConfirmation("", "pay_xyz", "sig"),
        PaymentConfirmation("order_abc", "  ", "sig"),
        PaymentConfirmation("order_abc", "pay_xyz", ""),
    ],
)
def test_verify_rejects_incomplete_confirmation(confirmation) -> None:
    result = PaymentVerifier(TEST_KEY_SECRET).verify(expected_order_id="order_abc", confirmation=confirmation)
    assert not result.valid
    assert result.reason == REASON_INCOMPLETE


def test_verifier_requires_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    with pytest.raises(ValueError):
        PaymentVerifier("")
    monkeypatch.delenv("RAZORPAY_KEY_SECRET", raising=False)
    with pytest.raises(RuntimeError):
        get_payment_verifier()


def test_verify_webhook_signature_uses_configured_secret() -> None:
    body = b'{"event":"payment.captured"}'
    signature = hmac.new(TEST_WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()

    assert verify_webhook_signature(body, signature)
    assert not verify_webhook_signature(body + b" ", signature)
    assert not verify_webhook_signature(body, None)
    assert not verify_webhook_signature(b"", signature)
