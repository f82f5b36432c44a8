"""Payments service helpers."""

from .gateway import GatewayOrder, PaymentGateway, PaymentGatewayError
from .razorpay_client import (
    RazorpayClient,
    get_razorpay_client,
    get_razorpay_key_secret,
    get_razorpay_public_config,
    get_razorpay_webhook_secret,
)
from .verifier import (
    PaymentConfirmation,
    PaymentVerifier,
    VerificationResult,
    get_payment_verifier,
    verify_payment_signature,
    verify_webhook_signature,
)

__all__ = [
    "GatewayOrder",
    "PaymentConfirmation",
    "PaymentGateway",
    "PaymentGatewayError",
    "PaymentVerifier",
    "RazorpayClient",
    "VerificationResult",
    "get_payment_verifier",
    "get_razorpay_client",
    "get_razorpay_key_secret",
    "get_razorpay_public_config",
    "get_razorpay_webhook_secret",
    "verify_payment_signature",
    "verify_webhook_signature",
]
