"""Manual follow-up for payment orders flagged ``needs_reconciliation``.

Captured payments that never reached ``APPLIED`` end up here. Operators can
retry the apply step (the payment is not re-verified), optionally rebasing the
compare-and-set guard onto the organisation's current plan, or close the flag
once the payment was settled out of band.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.plan_constants import UpgradeState
from models.org import Org
from services.payments import payment_metrics
from services.payments.errors import OrderNotFoundError, ReconciliationError
from services.payments.order_store import get_order, list_flagged_orders as _list_flagged, order_state, transition
from services.payments.payment_audit import append_payment_audit_entry
from services.payments.upgrade_orchestrator import UpgradeAttempt, attempt_from_order
from services.plan_assignment_service import PlanAssignmentError, assign_plan_with_retry

logger = logging.getLogger(__name__)

_RETRYABLE_STATES = frozenset({UpgradeState.APPLY_FAILED, UpgradeState.VERIFIED, UpgradeState.APPLYING})


def list_flagged_orders(
    session: Session,
    *,
    org_id: Optional[uuid.UUID] = None,
    limit: int = 100,
) -> List[UpgradeAttempt]:
    return [attempt_from_order(order) for order in _list_flagged(session, org_id=org_id, limit=limit)]


def retry_apply(
    session: Session,
    order_id: uuid.UUID,
    *,
    rebase: bool = False,
    max_attempts: Optional[int] = None,
    delay: Optional[float] = None,
) -> UpgradeAttempt:
    """Re-run the plan switch for a captured payment."""
    order = get_order(session, order_id)
    if order is None:
        raise OrderNotFoundError(orderId=str(order_id))
    state = order_state(order)
    if state not in _RETRYABLE_STATES or (state is not UpgradeState.APPLY_FAILED and not order.needs_reconciliation):
        raise ReconciliationError(orderId=str(order_id), state=state.value)

    org_id, target_plan_id = order.org_id, order.target_plan_id
    current_plan_id = session.scalar(select(Org.plan_id).where(Org.id == org_id))
    expected_plan_id = current_plan_id if rebase else order.expected_plan_id

    applied = False
    error: Optional[str] = None
    if current_plan_id == target_plan_id:
        applied = True
        logger.info("Org %s is already on plan %s; closing order %s.", org_id, target_plan_id, order_id)
    else:
        try:
            result = assign_plan_with_retry(
                session,
                org_id,
                target_plan_id,
                expected_plan_id,
                max_attempts=max_attempts,
                delay=delay,
            )
        except PlanAssignmentError as exc:
            session.rollback()
            error = str(exc)
        else:
            applied = result.applied
            if not applied:
                error = f"Plan changed before apply: expected {expected_plan_id}, found {result.current_plan_id}."

    order = get_order(session, order_id, for_update=True)
    if order is None:
        raise OrderNotFoundError(orderId=str(order_id))
    if order_state(order) is not UpgradeState.APPLYING:
        transition(order, UpgradeState.APPLYING, reason="reconciliation retry")
    order.apply_attempts = (order.apply_attempts or 0) + 1
    if applied:
        if rebase:
            order.expected_plan_id = expected_plan_id
        transition(order, UpgradeState.APPLIED)
        order.applied_at = datetime.now(timezone.utc)
        order.needs_reconciliation = False
        order.failure_reason = None
    else:
        transition(order, UpgradeState.APPLY_FAILED, reason=error)
        order.failure_reason = error
        order.needs_reconciliation = True
    attempt = attempt_from_order(order)
    session.commit()

    append_payment_audit_entry(
        event="reconciliation_retry",
        context={"orderId": str(order_id), "orgId": str(org_id), "rebase": rebase, "state": attempt.state.value},
        message=error,
    )
    payment_metrics.record_outcome(attempt.state)
    if applied:
        logger.info("Reconciliation applied order %s.", order_id)
    else:
        logger.error("Reconciliation retry for order %s failed: %s", order_id, error)
    return attempt


def mark_reconciled(session: Session, order_id: uuid.UUID, *, note: str) -> UpgradeAttempt:
    """Clear the reconciliation flag without touching the plan."""
    order = get_order(session, order_id, for_update=True)
    if order is None:
        raise OrderNotFoundError(orderId=str(order_id))
    if not order.needs_reconciliation:
        session.rollback()
        raise ReconciliationError("The order is not flagged for reconciliation.", orderId=str(order_id))
    order.needs_reconciliation = False
    order.history = [
        *(order.history or []),
        {
            "from": order.status,
            "to": order.status,
            "at": datetime.now(timezone.utc).isoformat(),
            "reason": f"reconciled: {note}",
        },
    ]
    attempt = attempt_from_order(order)
    session.commit()
    append_payment_audit_entry(
        event="reconciled",
        context={"orderId": str(order_id), "orgId": str(attempt.org_id), "state": attempt.state.value},
        message=note,
    )
    logger.info("Order %s marked reconciled: %s", order_id, note)
    return attempt


__all__ = ["list_flagged_orders", "mark_reconciled", "retry_apply"]
