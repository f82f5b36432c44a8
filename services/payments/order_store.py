"""Persistence helpers for payment orders and their state transitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.env import env_int
from core.plan_constants import AWAITING_CHECKOUT_STATES, TERMINAL_UPGRADE_STATES, UpgradeState
from models.payments import PaymentOrder
from services.payments.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

_S = UpgradeState

ALLOWED_TRANSITIONS: Mapping[UpgradeState, FrozenSet[UpgradeState]] = {
    # IDLE rows hold the organisation slot while the gateway order is minted.
    _S.IDLE: frozenset({_S.ORDER_CREATED, _S.EXPIRED}),
    _S.ORDER_CREATED: frozenset(
        {_S.CHECKOUT_OPEN, _S.AUTHORIZED, _S.GATEWAY_FAILED, _S.USER_DISMISSED, _S.EXPIRED}
    ),
    _S.CHECKOUT_OPEN: frozenset({_S.AUTHORIZED, _S.GATEWAY_FAILED, _S.USER_DISMISSED, _S.EXPIRED}),
    # The payer may retry inside the same checkout after a decline or a dismissal.
    _S.GATEWAY_FAILED: frozenset({_S.AUTHORIZED}),
    _S.USER_DISMISSED: frozenset({_S.AUTHORIZED}),
    _S.EXPIRED: frozenset({_S.AUTHORIZED}),
    _S.AUTHORIZED: frozenset({_S.VERIFYING}),
    _S.VERIFYING: frozenset({_S.VERIFIED, _S.VERIFICATION_FAILED}),
    _S.VERIFIED: frozenset({_S.APPLYING}),
    _S.APPLYING: frozenset({_S.APPLIED, _S.APPLY_FAILED}),
    _S.APPLY_FAILED: frozenset({_S.APPLYING}),
    _S.VERIFICATION_FAILED: frozenset(),
    _S.APPLIED: frozenset(),
}

IN_FLIGHT_STATES: FrozenSet[UpgradeState] = frozenset(
    {_S.AUTHORIZED, _S.VERIFYING, _S.VERIFIED, _S.APPLYING}
)


def order_ttl() -> timedelta:
    return timedelta(minutes=env_int("PAYMENT_ORDER_TTL_MINUTES", 30, minimum=1))


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def order_state(order: PaymentOrder) -> UpgradeState:
    return UpgradeState(order.status)


def transition(order: PaymentOrder, target: UpgradeState, *, reason: Optional[str] = None) -> None:
    """Move ``order`` to ``target`` and append the step to its history."""
    current = order_state(order)
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(
            f"Order cannot move from {current.value} to {target.value}.",
            orderId=str(order.id),
            state=current.value,
        )
    entry: Dict[str, Any] = {
        "from": current.value,
        "to": target.value,
        "at": datetime.now(timezone.utc).isoformat(),
    }
    if reason:
        entry["reason"] = reason
    order.status = target.value
    order.history = [*(order.history or []), entry]
    logger.debug("Payment order %s moved %s -> %s", order.id, current.value, target.value)


def get_order(session: Session, order_id: uuid.UUID, *, for_update: bool = False) -> Optional[PaymentOrder]:
    stmt = select(PaymentOrder).where(PaymentOrder.id == order_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    return session.scalars(stmt).first()


def get_order_by_gateway_id(
    session: Session,
    gateway_order_id: str,
    *,
    for_update: bool = False,
) -> Optional[PaymentOrder]:
    stmt = (
        select(PaymentOrder)
        .where(PaymentOrder.gateway_order_id == gateway_order_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return session.scalars(stmt).first()


def is_expired(order: PaymentOrder, *, now: Optional[datetime] = None) -> bool:
    current = now or datetime.now(timezone.utc)
    expires_at = ensure_aware(order.expires_at)
    return expires_at is not None and expires_at <= current


def find_active_order(
    session: Session,
    org_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> Optional[PaymentOrder]:
    """Return the organisation's open attempt, retiring the ones past their TTL.

    Reserved and awaiting orders past ``expires_at`` move to ``EXPIRED``. Orders stuck between
    authorization and apply for longer than the TTL are flagged for reconciliation
    and stop blocking new attempts. Changes are flushed, not committed.
    """
    current = now or datetime.now(timezone.utc)
    ttl = order_ttl()
    open_states = [state.value for state in UpgradeState if state not in TERMINAL_UPGRADE_STATES]
    rows = session.scalars(
        select(PaymentOrder)
        .where(PaymentOrder.org_id == org_id, PaymentOrder.status.in_(open_states))
        .order_by(PaymentOrder.created_at.desc())
        .with_for_update()
    ).all()

    active: Optional[PaymentOrder] = None
    for order in rows:
        state = order_state(order)
        if (state is UpgradeState.IDLE or state in AWAITING_CHECKOUT_STATES) and is_expired(order, now=current):
            transition(order, UpgradeState.EXPIRED, reason="checkout window elapsed")
            logger.info("Expired payment order %s for org=%s", order.id, org_id)
            continue
        if state in IN_FLIGHT_STATES:
            updated_at = ensure_aware(order.updated_at) or current
            if order.needs_reconciliation:
                continue
            if updated_at + ttl <= current:
                order.needs_reconciliation = True
                order.failure_reason = order.failure_reason or f"stalled in {state.value}"
                logger.error("Payment order %s stalled in %s; flagged for reconciliation.", order.id, state.value)
                continue
        if active is None:
            active = order
    session.flush()
    return active


def list_flagged_orders(
    session: Session,
    *,
    org_id: Optional[uuid.UUID] = None,
    limit: int = 100,
) -> List[PaymentOrder]:
    stmt = (
        select(PaymentOrder)
        .where(PaymentOrder.needs_reconciliation.is_(True))
        .order_by(PaymentOrder.created_at)
        .limit(limit)
    )
    if org_id is not None:
        stmt = stmt.where(PaymentOrder.org_id == org_id)
    return list(session.scalars(stmt).all())


__all__ = [
    "ALLOWED_TRANSITIONS",
    "IN_FLIGHT_STATES",
    "ensure_aware",
    "find_active_order",
    "get_order",
    "get_order_by_gateway_id",
    "is_expired",
    "list_flagged_orders",
    "order_state",
    "order_ttl",
    "transition",
]
