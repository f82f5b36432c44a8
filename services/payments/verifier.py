"""Checkout and webhook signature checks for Razorpay payments."""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from services.payments.razorpay_client import get_razorpay_key_secret, get_razorpay_webhook_secret

logger = logging.getLogger(__name__)

REASON_INCOMPLETE = "incomplete_confirmation"
REASON_ORDER_MISMATCH = "order_mismatch"
REASON_SIGNATURE_MISMATCH = "signature_mismatch"


@dataclass(frozen=True, slots=True)
class PaymentConfirmation:
    """The triple returned by the checkout widget after an authorization."""

    order_id: str
    payment_id: str
    signature: str


@dataclass(frozen=True, slots=True)
class VerificationResult:
    valid: bool
    payment_id: Optional[str] = None
    reason: Optional[str] = None


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def compute_payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    return _hmac_hex(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Validate the checkout signature ``HMAC_SHA256(order_id|payment_id)``."""
    if not order_id or not payment_id or not signature or not secret:
        return False
    expected = compute_payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    """Validate the ``X-Razorpay-Signature`` header against the raw request body."""
    if not body or not signature:
        return False
    secret_key = secret or get_razorpay_webhook_secret()
    expected = _hmac_hex(secret_key, body)
    return hmac.compare_digest(expected, signature.strip().lower())


class PaymentVerifier:
    """Checks a checkout confirmation against the order the server minted."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("A key secret is required to verify payments.")
        self._secret = secret

    def verify(self, *, expected_order_id: str, confirmation: PaymentConfirmation) -> VerificationResult:
        payment_id = (confirmation.payment_id or "").strip() or None
        if not confirmation.order_id or not payment_id or not confirmation.signature:
            return VerificationResult(valid=False, payment_id=payment_id, reason=REASON_INCOMPLETE)
        # Only the gateway order minted for this attempt is accepted.
        if confirmation.order_id != expected_order_id:
            logger.warning(
                "Checkout confirmation for order %s presented against order %s.",
                confirmation.order_id,
                expected_order_id,
            )
            return VerificationResult(valid=False, payment_id=payment_id, reason=REASON_ORDER_MISMATCH)
        if not verify_payment_signature(expected_order_id, payment_id, confirmation.signature, self._secret):
            return VerificationResult(valid=False, payment_id=payment_id, reason=REASON_SIGNATURE_MISMATCH)
        return VerificationResult(valid=True, payment_id=payment_id)


def get_payment_verifier() -> PaymentVerifier:
    return PaymentVerifier(get_razorpay_key_secret())


__all__ = [
    "PaymentConfirmation",
    "PaymentVerifier",
    "REASON_INCOMPLETE",
    "REASON_ORDER_MISMATCH",
    "REASON_SIGNATURE_MISMATCH",
    "VerificationResult",
    "compute_payment_signature",
    "get_payment_verifier",
    "verify_payment_signature",
    "verify_webhook_signature",
]
