"""Mint gateway orders for self-service plan upgrades."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from core.plan_constants import UpgradeState
from models.payments import PaymentOrder
from services.payments.errors import (
    InvalidPricingError,
    OrderCreationError,
    OrderNotFoundError,
    PlanNotFoundError,
    UpgradeError,
)
from services.payments.gateway import PaymentGateway, PaymentGatewayError
from services.payments.order_store import get_order, order_state, order_ttl, transition
from services.plan_catalog_service import get_plan

logger = logging.getLogger(__name__)

# Currencies whose minor unit is not 1/100.
_CURRENCY_EXPONENTS: Dict[str, int] = {
    "BHD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "VND": 0,
}
_DEFAULT_EXPONENT = 2


@dataclass(frozen=True, slots=True)
class OrderHandle:
    """What the checkout widget needs to collect payment for one order."""

    order_id: uuid.UUID
    gateway_order_id: str
    amount_minor: int
    amount: Decimal
    currency: str
    expires_at: datetime


def currency_exponent(currency: str) -> int:
    return _CURRENCY_EXPONENTS.get(currency.upper(), _DEFAULT_EXPONENT)


def to_minor_units(price: Decimal, currency: str) -> int:
    """Convert ``price`` into integer minor units, refusing to round."""
    scaled = price.scaleb(currency_exponent(currency))
    if scaled != scaled.to_integral_value():
        raise InvalidPricingError(
            f"{price} cannot be charged in {currency} without rounding.",
            currency=currency,
        )
    return int(scaled)


def build_order_notes(
    *,
    org_id: uuid.UUID,
    plan_id: uuid.UUID,
    pricing_id: uuid.UUID,
    from_plan: Optional[str],
    to_plan: str,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Dict[str, str]:
    notes: Dict[str, str] = {}
    for key, value in (metadata or {}).items():
        if value is None:
            continue
        notes[str(key)] = str(value)
    notes.update(
        {
            "type": "plan_upgrade",
            "orgId": str(org_id),
            "planId": str(plan_id),
            "pricingId": str(pricing_id),
            "fromPlan": from_plan or "Unknown",
            "toPlan": to_plan,
        }
    )
    return notes


def reserve_order(
    session: Session,
    *,
    org_id: uuid.UUID,
    plan_id: uuid.UUID,
    pricing_id: uuid.UUID,
    currency: str,
    expected_plan_id: uuid.UUID,
    metadata: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> PaymentOrder:
    """Validate the charge and add an ``IDLE`` order row holding the organisation's slot.

    The row has no gateway order yet and is flushed, not committed.
    """
    plan = get_plan(session, plan_id)
    if plan is None or not plan.is_active:
        raise PlanNotFoundError(planId=str(plan_id))
    pricing = plan.pricing_by_id(pricing_id)
    if pricing is None:
        raise InvalidPricingError("The pricing does not belong to the selected plan.", pricingId=str(pricing_id))
    if pricing.price <= 0:
        raise InvalidPricingError("Free or unpriced plans cannot be charged.", pricingId=str(pricing_id))
    requested_currency = (currency or "").strip().upper()
    if requested_currency != pricing.currency:
        raise InvalidPricingError(
            f"Currency {requested_currency or '?'} does not match the plan currency {pricing.currency}.",
            currency=requested_currency,
        )
    amount_minor = to_minor_units(pricing.price, pricing.currency)

    current_plan = get_plan(session, expected_plan_id)
    created_at = now or datetime.now(timezone.utc)
    order = PaymentOrder(
        id=uuid.uuid4(),
        org_id=org_id,
        target_plan_id=plan.id,
        target_pricing_id=pricing.id,
        expected_plan_id=expected_plan_id,
        amount_minor=amount_minor,
        currency=pricing.currency,
        gateway_order_id=None,
        status=UpgradeState.IDLE.value,
        notes=build_order_notes(
            org_id=org_id,
            plan_id=plan.id,
            pricing_id=pricing.id,
            from_plan=current_plan.name if current_plan else None,
            to_plan=plan.name,
            metadata=metadata,
        ),
        history=[],
        expires_at=created_at + order_ttl(),
        created_at=created_at,
        updated_at=created_at,
    )
    session.add(order)
    session.flush()
    return order


async def submit_order(session: Session, gateway: PaymentGateway, order_id: uuid.UUID) -> OrderHandle:
    """Mint the gateway order for a reserved row and move it to ``ORDER_CREATED``.

    No row lock is held while the gateway is awaited; the row is re-read with
    ``FOR UPDATE`` afterwards. The change is flushed, not committed.
    """
    order = get_order(session, order_id)
    if order is None:
        raise OrderNotFoundError(orderId=str(order_id))
    amount_minor, currency = order.amount_minor, order.currency
    notes = dict(order.notes or {})

    try:
        gateway_order = await gateway.create_order(
            amount=amount_minor,
            currency=currency,
            receipt=str(order_id),
            notes=notes,
        )
    except PaymentGatewayError as exc:
        logger.warning("Gateway refused order %s for org=%s: %s", order_id, notes.get("orgId"), exc)
        raise OrderCreationError(str(exc), gatewayStatus=exc.status_code) from exc

    if gateway_order.amount != amount_minor or gateway_order.currency != currency:
        logger.error(
            "Gateway echoed %s %s for order %s, expected %s %s",
            gateway_order.amount,
            gateway_order.currency,
            gateway_order.order_id,
            amount_minor,
            currency,
        )
        raise OrderCreationError("The gateway echoed a different amount or currency.")

    order = get_order(session, order_id, for_update=True)
    if order is None:
        raise OrderNotFoundError(orderId=str(order_id))
    transition(order, UpgradeState.ORDER_CREATED)
    order.gateway_order_id = gateway_order.order_id
    session.flush()
    logger.info(
        "Created payment order %s (gateway=%s) for org=%s plan=%s amount=%s %s",
        order.id,
        gateway_order.order_id,
        order.org_id,
        notes.get("toPlan"),
        amount_minor,
        currency,
    )
    return OrderHandle(
        order_id=order.id,
        gateway_order_id=gateway_order.order_id,
        amount_minor=amount_minor,
        amount=Decimal(amount_minor).scaleb(-currency_exponent(currency)),
        currency=currency,
        expires_at=order.expires_at,
    )


def discard_reservation(session: Session, order_id: uuid.UUID) -> bool:
    """Delete an order that never got a gateway order. Flushed, not committed."""
    order = get_order(session, order_id, for_update=True)
    if order is None or order_state(order) is not UpgradeState.IDLE:
        return False
    session.delete(order)
    session.flush()
    return True


async def create_order(
    session: Session,
    gateway: PaymentGateway,
    *,
    org_id: uuid.UUID,
    plan_id: uuid.UUID,
    pricing_id: uuid.UUID,
    currency: str,
    expected_plan_id: uuid.UUID,
    metadata: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> OrderHandle:
    """Validate the charge, call the gateway once and persist the order row.

    The row is flushed but not committed; the caller owns the transaction. A
    gateway failure or a mismatched echo leaves nothing behind.
    """
    order = reserve_order(
        session,
        org_id=org_id,
        plan_id=plan_id,
        pricing_id=pricing_id,
        currency=currency,
        expected_plan_id=expected_plan_id,
        metadata=metadata,
        now=now,
    )
    order_id = order.id
    try:
        return await submit_order(session, gateway, order_id)
    except UpgradeError:
        discard_reservation(session, order_id)
        raise


__all__ = [
    "OrderHandle",
    "build_order_notes",
    "create_order",
    "currency_exponent",
    "discard_reservation",
    "reserve_order",
    "submit_order",
    "to_minor_units",
]
