"""Payment API schemas."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from schemas.api.plan import BillingPeriodValue

UpgradeStateValue = Literal[
    "idle",
    "order_created",
    "checkout_open",
    "authorized",
    "gateway_failed",
    "user_dismissed",
    "expired",
    "verifying",
    "verified",
    "verification_failed",
    "applying",
    "applied",
    "apply_failed",
]


class RazorpayConfigResponse(BaseModel):
    keyId: str = Field(..., description="Public key id used by the Razorpay checkout widget.")
    brandName: str = Field(..., description="Merchant name shown in the checkout modal.")


class UpgradeCreateRequest(BaseModel):
    orgId: str = Field(..., description="Organisation being upgraded.")
    planId: str = Field(..., description="Target plan id.")
    period: BillingPeriodValue = Field(default="monthly", description="Billing period of the pricing to charge.")
    customerName: Optional[str] = Field(default=None, description="Prefill for the checkout form.")
    customerEmail: Optional[str] = Field(default=None, description="Prefill for the checkout form.")


class OrderHandleSchema(BaseModel):
    orderId: str
    gatewayOrderId: str
    amount: int = Field(..., description="Amount in the currency's minor unit.")
    displayAmount: str
    currency: str
    expiresAt: Optional[str] = None


class UpgradeHistoryEntry(BaseModel):
    from_: str = Field(..., alias="from")
    to: str
    at: str
    reason: Optional[str] = None

    model_config = {"populate_by_name": True}


class UpgradeAttemptResponse(BaseModel):
    orderId: str
    orgId: str
    planId: str
    pricingId: str
    state: UpgradeStateValue
    paymentId: Optional[str] = None
    reason: Optional[str] = None
    needsReconciliation: bool = False
    order: Optional[OrderHandleSchema] = None
    checkoutOptions: Optional[Dict[str, Any]] = None
    history: List[UpgradeHistoryEntry] = Field(default_factory=list)


class CheckoutOutcomeRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    error: Optional[Dict[str, Any]] = Field(default=None, description="The payment.failed error object.")
    dismissed: bool = False
    expired: bool = False


class PaymentVerifyRequest(BaseModel):
    razorpay_order_id: str = Field(..., description="Gateway order id returned by checkout.")
    razorpay_payment_id: str = Field(..., description="Gateway payment id returned by checkout.")
    razorpay_signature: str = Field(..., description="Signature returned by checkout.")
