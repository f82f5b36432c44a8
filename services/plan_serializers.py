"""Shared helpers for rendering catalog records and upgrade attempts into API schemas."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence

from schemas.api.payments import OrderHandleSchema, UpgradeAttemptResponse, UpgradeHistoryEntry
from schemas.api.plan import (
    ContactTicketResponse,
    OrganizationPlanResponse,
    PlanPricingSchema,
    PlanSchema,
    PlanUsageSchema,
)
from services.payments.order_service import OrderHandle
from services.payments.upgrade_orchestrator import UpgradeAttempt
from services.plan_catalog_service import OrganizationPlan, PlanRecord, PricingRecord
from services.plan_contact_service import ContactTicket

_CURRENCY_SYMBOLS = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
}
_STORAGE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def format_price(price: Decimal, currency: str) -> str:
    """Render ``price`` the way plan cards show it: ``Free``, ``₹1,999``, ``$29.50``."""
    if price <= 0:
        return "Free"
    symbol = _CURRENCY_SYMBOLS.get(currency.upper())
    if price == price.to_integral_value():
        amount = f"{int(price):,}"
    else:
        amount = f"{price:,.2f}"
    return f"{symbol}{amount}" if symbol else f"{amount} {currency.upper()}"


def format_storage(max_storage_bytes: Optional[int]) -> str:
    """Render a storage ceiling using 1024-based units; ``None`` is unlimited."""
    if max_storage_bytes is None or max_storage_bytes <= 0:
        return "Unlimited"
    value = Decimal(max_storage_bytes)
    unit_index = 0
    while value >= 1024 and unit_index < len(_STORAGE_UNITS) - 1:
        value /= 1024
        unit_index += 1
    rounded = value.quantize(Decimal("0.1"))
    text = f"{rounded.normalize():f}" if rounded != rounded.to_integral_value() else f"{int(rounded)}"
    return f"{text}{_STORAGE_UNITS[unit_index]}"


def serialize_pricing(pricing: PricingRecord) -> PlanPricingSchema:
    return PlanPricingSchema(
        id=str(pricing.id),
        billingPeriod=pricing.billing_period.value,
        price=str(pricing.price),
        currency=pricing.currency,
        displayPrice=format_price(pricing.price, pricing.currency),
    )


def serialize_plan(plan: PlanRecord) -> PlanSchema:
    return PlanSchema(
        id=str(plan.id),
        slug=plan.slug,
        name=plan.name,
        description=plan.description,
        maxUsers=plan.max_users,
        maxApps=plan.max_apps,
        maxStorageBytes=plan.max_storage_bytes,
        storageLabel=format_storage(plan.max_storage_bytes),
        isDefault=plan.is_default,
        isActive=plan.is_active,
        sortOrder=plan.sort_order,
        pricings=[serialize_pricing(pricing) for pricing in plan.pricings],
    )


def serialize_organization_plan(org_plan: OrganizationPlan) -> OrganizationPlanResponse:
    usage = org_plan.usage
    return OrganizationPlanResponse(
        orgId=str(org_plan.org_id),
        orgName=org_plan.org_name,
        plan=serialize_plan(org_plan.plan),
        usage=PlanUsageSchema(
            users=usage.users,
            apps=usage.apps,
            usersRemaining=usage.users_remaining,
            appsRemaining=usage.apps_remaining,
            withinLimits=usage.within_limits,
        ),
    )


def serialize_order_handle(handle: OrderHandle) -> OrderHandleSchema:
    return OrderHandleSchema(
        orderId=str(handle.order_id),
        gatewayOrderId=handle.gateway_order_id,
        amount=handle.amount_minor,
        displayAmount=format_price(handle.amount, handle.currency),
        currency=handle.currency,
        expiresAt=handle.expires_at.isoformat() if handle.expires_at else None,
    )


def _history(entries: Sequence[dict]) -> list[UpgradeHistoryEntry]:
    return [UpgradeHistoryEntry.model_validate(entry) for entry in entries]


def serialize_attempt(attempt: UpgradeAttempt) -> UpgradeAttemptResponse:
    return UpgradeAttemptResponse(
        orderId=str(attempt.order_id),
        orgId=str(attempt.org_id),
        planId=str(attempt.plan_id),
        pricingId=str(attempt.pricing_id),
        state=attempt.state.value,
        paymentId=attempt.payment_id,
        reason=attempt.reason,
        needsReconciliation=attempt.needs_reconciliation,
        order=serialize_order_handle(attempt.handle) if attempt.handle else None,
        checkoutOptions=attempt.checkout_options,
        history=_history(attempt.history),
    )


def serialize_contact_ticket(ticket: ContactTicket) -> ContactTicketResponse:
    return ContactTicketResponse(
        kind=ticket.kind,
        supportEmail=ticket.support_email,
        subject=ticket.subject,
        body=ticket.body,
        mailtoUrl=ticket.mailto_url,
        orgId=str(ticket.org_id),
        currentPlan=ticket.current_plan,
        requestedPlan=ticket.requested_plan,
    )


__all__ = [
    "format_price",
    "format_storage",
    "serialize_attempt",
    "serialize_contact_ticket",
    "serialize_order_handle",
    "serialize_organization_plan",
    "serialize_plan",
    "serialize_pricing",
]
