"""Drive one plan upgrade from order minting through verification to the plan switch.

Each attempt lives on a ``PaymentOrder`` row whose ``status`` is an
``UpgradeState``. The flow is split in two halves so it can span HTTP requests:

* ``begin_upgrade`` checks the tier comparison, enforces one open attempt per
  organisation, mints the gateway order and opens checkout.
* ``resolve_checkout`` consumes the single checkout outcome. Authorizations are
  verified, then applied through the plan assignment compare-and-set. The final
  order state commits in the same transaction as the plan change.

``run_upgrade`` chains both halves around a ``CheckoutAdapter`` for in-process use.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.env import env_str
from core.plan_constants import (
    AWAITING_CHECKOUT_STATES,
    RECONCILIATION_STATES,
    BillingPeriod,
    UpgradeState,
)
from models.org import Org
from models.payments import PaymentOrder
from services.payments import payment_metrics
from services.payments.checkout import (
    CheckoutAdapter,
    CheckoutAuthorized,
    CheckoutDismissed,
    CheckoutFailed,
    CheckoutOutcome,
)
from services.payments.errors import (
    ContactSalesRequiredError,
    DowngradeRequiresContactError,
    InvalidPricingError,
    InvalidTransitionError,
    NoUpgradeAvailableError,
    OrderNotFoundError,
    OrganizationNotFoundError,
    PlanNotFoundError,
    UpgradeError,
    UpgradeInProgressError,
)
from services.payments.gateway import PaymentGateway
from services.payments.order_service import (
    OrderHandle,
    currency_exponent,
    discard_reservation,
    reserve_order,
    submit_order,
)
from services.payments.order_store import (
    IN_FLIGHT_STATES,
    find_active_order,
    get_order,
    get_order_by_gateway_id,
    order_state,
    transition,
)
from services.payments.payment_audit import append_payment_audit_entry
from services.payments.razorpay_client import get_checkout_brand_name
from services.payments.verifier import REASON_INCOMPLETE, PaymentVerifier, VerificationResult
from services.plan_assignment_service import PlanAssignmentError, assign_plan_with_retry
from services.plan_catalog_service import PlanRecord, get_organization_plan, get_plan
from services.plan_tiers import PlanAction, resolve_plan_action

logger = logging.getLogger(__name__)

_CHECKOUT_THEME_COLOR = "#2563eb"

# Striped by order id and shared by every orchestrator in the process; rows are also locked FOR UPDATE.
_ORDER_LOCK_STRIPES = 64
_ORDER_LOCKS: Tuple[threading.Lock, ...] = tuple(threading.Lock() for _ in range(_ORDER_LOCK_STRIPES))


@dataclass(frozen=True, slots=True)
class UpgradeAttempt:
    """Snapshot of one payment order as seen by callers."""

    order_id: uuid.UUID
    org_id: uuid.UUID
    plan_id: uuid.UUID
    pricing_id: uuid.UUID
    state: UpgradeState
    history: Tuple[Dict[str, Any], ...] = ()
    handle: Optional[OrderHandle] = None
    payment_id: Optional[str] = None
    reason: Optional[str] = None
    needs_reconciliation: bool = False
    checkout_options: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        return self.state is UpgradeState.APPLIED


def attempt_from_order(
    order: PaymentOrder,
    *,
    handle: Optional[OrderHandle] = None,
    checkout_options: Optional[Dict[str, Any]] = None,
) -> UpgradeAttempt:
    return UpgradeAttempt(
        order_id=order.id,
        org_id=order.org_id,
        plan_id=order.target_plan_id,
        pricing_id=order.target_pricing_id,
        state=order_state(order),
        history=tuple(order.history or ()),
        handle=handle,
        payment_id=order.gateway_payment_id,
        reason=order.failure_reason,
        needs_reconciliation=bool(order.needs_reconciliation),
        checkout_options=checkout_options,
    )


def handle_from_order(order: PaymentOrder) -> OrderHandle:
    return OrderHandle(
        order_id=order.id,
        gateway_order_id=order.gateway_order_id,
        amount_minor=order.amount_minor,
        amount=Decimal(order.amount_minor).scaleb(-currency_exponent(order.currency)),
        currency=order.currency,
        expires_at=order.expires_at,
    )


def _captured_verification(payment_id: Optional[str]) -> VerificationResult:
    """Webhook bodies are authenticated upstream; only the payment id is required."""
    if not payment_id:
        return VerificationResult(valid=False, reason=REASON_INCOMPLETE)
    return VerificationResult(valid=True, payment_id=payment_id)


class UpgradeOrchestrator:
    """Owns every state change of a payment order after it is minted."""

    def __init__(
        self,
        gateway: PaymentGateway,
        verifier: PaymentVerifier,
        *,
        key_id: Optional[str] = None,
        brand_name: Optional[str] = None,
        max_apply_attempts: Optional[int] = None,
        apply_retry_delay: Optional[float] = None,
        tier_ranks: Optional[Mapping[str, int]] = None,
    ) -> None:
        self._gateway = gateway
        self._verifier = verifier
        self._key_id = key_id if key_id is not None else env_str("RAZORPAY_KEY_ID", "")
        self._brand_name = brand_name or get_checkout_brand_name()
        self._max_apply_attempts = max_apply_attempts
        self._apply_retry_delay = apply_retry_delay
        self._tier_ranks = tier_ranks

    @staticmethod
    def _order_lock(order_id: uuid.UUID) -> threading.Lock:
        return _ORDER_LOCKS[order_id.int % _ORDER_LOCK_STRIPES]

    # ------------------------------------------------------------------ begin

    async def begin_upgrade(
        self,
        session: Session,
        *,
        org_id: uuid.UUID,
        plan_id: uuid.UUID,
        period: BillingPeriod | str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> UpgradeAttempt:
        try:
            billing_period = BillingPeriod(period)
        except ValueError as exc:
            raise InvalidPricingError(f"Unknown billing period {period!r}.") from exc

        order_id, from_slug, candidate = self._reserve_slot(
            session,
            org_id=org_id,
            plan_id=plan_id,
            period=billing_period,
            metadata=metadata,
        )
        # The reservation is committed; no row lock is held while the gateway is awaited.
        try:
            handle = await submit_order(session, self._gateway, order_id)
        except UpgradeError:
            session.rollback()
            discard_reservation(session, order_id)
            session.commit()
            raise

        order = get_order(session, order_id, for_update=True)
        if order is None:
            raise OrderNotFoundError(orderId=str(order_id))
        transition(order, UpgradeState.CHECKOUT_OPEN)
        options = self.checkout_options(order, plan_name=candidate.name, metadata=metadata)
        attempt = attempt_from_order(order, handle=handle, checkout_options=options)
        session.commit()
        payment_metrics.record_order_created(handle.currency)
        logger.info(
            "Opened checkout for org=%s order=%s %s -> %s",
            org_id,
            handle.order_id,
            from_slug,
            candidate.slug,
        )
        return attempt

    def _reserve_slot(
        self,
        session: Session,
        *,
        org_id: uuid.UUID,
        plan_id: uuid.UUID,
        period: BillingPeriod,
        metadata: Optional[Mapping[str, Any]],
    ) -> Tuple[uuid.UUID, str, PlanRecord]:
        """Check the switch and commit an ``IDLE`` order holding the organisation's slot.

        Runs without yielding to the event loop, so the org row lock is released
        by the commit before any other coroutine can run.
        """
        try:
            locked = session.scalar(select(Org.id).where(Org.id == org_id).with_for_update())
            if locked is None:
                raise OrganizationNotFoundError(orgId=str(org_id))
            org_plan = get_organization_plan(session, org_id)
            if org_plan is None:
                raise OrganizationNotFoundError(orgId=str(org_id))
            candidate = get_plan(session, plan_id)
            if candidate is None or not candidate.is_active:
                raise PlanNotFoundError(planId=str(plan_id))

            action = resolve_plan_action(org_plan.plan, candidate, period, ranks=self._tier_ranks)
            if action is PlanAction.DOWNGRADE:
                raise DowngradeRequiresContactError(planId=str(plan_id))
            if action is PlanAction.CONTACT:
                raise ContactSalesRequiredError(planId=str(plan_id))
            if action is not PlanAction.UPGRADE:
                raise NoUpgradeAvailableError(planId=str(plan_id))
            pricing = candidate.pricing_for(period)
            if pricing is None:
                raise ContactSalesRequiredError(planId=str(plan_id))
        except UpgradeError:
            session.rollback()
            raise

        active = find_active_order(session, org_id)
        if active is not None:
            error = UpgradeInProgressError(orderId=str(active.id), state=active.status)
            session.commit()
            raise error

        try:
            order = reserve_order(
                session,
                org_id=org_id,
                plan_id=candidate.id,
                pricing_id=pricing.id,
                currency=pricing.currency,
                expected_plan_id=org_plan.plan.id,
                metadata=metadata,
            )
        except UpgradeError:
            session.rollback()
            raise
        order_id = order.id
        session.commit()
        return order_id, org_plan.plan.slug, candidate

    def checkout_options(
        self,
        order: PaymentOrder,
        *,
        plan_name: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Options handed to the checkout widget for ``order``."""
        extra = metadata or {}
        return {
            "key": self._key_id,
            "amount": order.amount_minor,
            "currency": order.currency,
            "name": self._brand_name,
            "description": f"Upgrade to {plan_name} Plan",
            "order_id": order.gateway_order_id,
            "prefill": {
                "name": str(extra.get("name") or ""),
                "email": str(extra.get("email") or ""),
            },
            "notes": dict(order.notes or {}),
            "theme": {"color": _CHECKOUT_THEME_COLOR},
        }

    # ---------------------------------------------------------------- resolve

    def resolve_checkout(
        self,
        session: Session,
        *,
        order_id: uuid.UUID,
        outcome: CheckoutOutcome,
    ) -> UpgradeAttempt:
        """Consume the checkout outcome for ``order_id``. Safe to call repeatedly."""
        with self._order_lock(order_id):
            order = get_order(session, order_id, for_update=True)
            if order is None:
                raise OrderNotFoundError(orderId=str(order_id))
            if isinstance(outcome, CheckoutAuthorized):
                return self._handle_authorized(
                    session,
                    order,
                    payment_id=outcome.payment_id,
                    verify=lambda current: self._verifier.verify(
                        expected_order_id=current.gateway_order_id,
                        confirmation=outcome,
                    ),
                    source="checkout",
                )
            if isinstance(outcome, CheckoutFailed):
                return self._close_checkout(
                    session,
                    order,
                    UpgradeState.GATEWAY_FAILED,
                    reason=outcome.reason,
                    payment_id=outcome.payment_id,
                )
            if isinstance(outcome, CheckoutDismissed):
                target = UpgradeState.EXPIRED if outcome.expired else UpgradeState.USER_DISMISSED
                return self._close_checkout(session, order, target, reason=None)
            raise TypeError(f"Unsupported checkout outcome {type(outcome).__name__}")

    def resolve_gateway_outcome(
        self,
        session: Session,
        *,
        gateway_order_id: str,
        outcome: CheckoutOutcome,
    ) -> UpgradeAttempt:
        order = get_order_by_gateway_id(session, gateway_order_id)
        if order is None:
            raise OrderNotFoundError(gatewayOrderId=gateway_order_id)
        return self.resolve_checkout(session, order_id=order.id, outcome=outcome)

    def confirm_captured_payment(
        self,
        session: Session,
        *,
        gateway_order_id: str,
        payment_id: str,
    ) -> UpgradeAttempt:
        """Apply an order the gateway reported as paid through a signed webhook."""
        order = get_order_by_gateway_id(session, gateway_order_id)
        if order is None:
            raise OrderNotFoundError(gatewayOrderId=gateway_order_id)
        with self._order_lock(order.id):
            order = get_order(session, order.id, for_update=True)
            if order is None:
                raise OrderNotFoundError(gatewayOrderId=gateway_order_id)
            return self._handle_authorized(
                session,
                order,
                payment_id=payment_id,
                verify=lambda _current: _captured_verification(payment_id),
                source="webhook",
            )

    async def run_upgrade(
        self,
        session: Session,
        *,
        org_id: uuid.UUID,
        plan_id: uuid.UUID,
        period: BillingPeriod | str,
        checkout: CheckoutAdapter,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> UpgradeAttempt:
        attempt = await self.begin_upgrade(
            session,
            org_id=org_id,
            plan_id=plan_id,
            period=period,
            metadata=metadata,
        )
        if attempt.handle is None:
            raise InvalidTransitionError("The upgrade did not open a checkout.", orderId=str(attempt.order_id))
        outcome = await checkout.open(attempt.handle, attempt.checkout_options)
        return self.resolve_checkout(session, order_id=attempt.order_id, outcome=outcome)

    def get_attempt(self, session: Session, order_id: uuid.UUID) -> UpgradeAttempt:
        order = get_order(session, order_id)
        if order is None:
            raise OrderNotFoundError(orderId=str(order_id))
        handle = handle_from_order(order) if order_state(order) in AWAITING_CHECKOUT_STATES else None
        return attempt_from_order(order, handle=handle)

    # -------------------------------------------------------------- internals

    def _release(self, session: Session, order: PaymentOrder) -> UpgradeAttempt:
        attempt = attempt_from_order(order)
        session.rollback()
        return attempt

    def _close_checkout(
        self,
        session: Session,
        order: PaymentOrder,
        target: UpgradeState,
        *,
        reason: Optional[str],
        payment_id: Optional[str] = None,
    ) -> UpgradeAttempt:
        state = order_state(order)
        if state not in AWAITING_CHECKOUT_STATES:
            logger.info(
                "Ignoring %s for order %s already in %s.",
                target.value,
                order.id,
                state.value,
            )
            return self._release(session, order)
        transition(order, target, reason=reason)
        order.failure_reason = reason
        if payment_id and not order.gateway_payment_id:
            order.gateway_payment_id = payment_id
        attempt = attempt_from_order(order)
        session.commit()
        payment_metrics.record_outcome(target)
        logger.info("Payment order %s closed as %s (%s).", order.id, target.value, reason or "no reason")
        return attempt

    def _handle_authorized(
        self,
        session: Session,
        order: PaymentOrder,
        *,
        payment_id: Optional[str],
        verify: Callable[[PaymentOrder], VerificationResult],
        source: str,
    ) -> UpgradeAttempt:
        state = order_state(order)
        if state is UpgradeState.APPLIED:
            if payment_id and order.gateway_payment_id and payment_id != order.gateway_payment_id:
                logger.warning(
                    "Order %s already applied with payment %s; ignoring payment %s from %s.",
                    order.id,
                    order.gateway_payment_id,
                    payment_id,
                    source,
                )
            return self._release(session, order)
        if state in RECONCILIATION_STATES or state in IN_FLIGHT_STATES:
            logger.info("Authorization from %s for order %s in %s ignored.", source, order.id, state.value)
            return self._release(session, order)
        if state not in AWAITING_CHECKOUT_STATES:
            logger.warning("Late authorization from %s for order %s in %s.", source, order.id, state.value)

        transition(order, UpgradeState.AUTHORIZED, reason=source)
        order.gateway_payment_id = payment_id or None
        transition(order, UpgradeState.VERIFYING)
        result = verify(order)
        if not result.valid:
            transition(order, UpgradeState.VERIFICATION_FAILED, reason=result.reason)
            order.failure_reason = result.reason
            order.needs_reconciliation = True
            context = self._audit_context(order)
            attempt = attempt_from_order(order)
            session.commit()
            logger.error(
                "Payment verification failed for order %s (payment=%s): %s",
                context["orderId"],
                payment_id,
                result.reason,
            )
            append_payment_audit_entry(event="verification_failed", context=context, message=result.reason)
            payment_metrics.record_outcome(UpgradeState.VERIFICATION_FAILED)
            payment_metrics.record_reconciliation_flag(UpgradeState.VERIFICATION_FAILED)
            return attempt

        transition(order, UpgradeState.VERIFIED)
        order_id = order.id
        session.commit()
        return self._apply(session, order_id)

    def _apply(self, session: Session, order_id: uuid.UUID) -> UpgradeAttempt:
        order = get_order(session, order_id)
        if order is None:
            raise OrderNotFoundError(orderId=str(order_id))
        org_id, target_plan_id, expected_plan_id = order.org_id, order.target_plan_id, order.expected_plan_id

        error: Optional[str] = None
        try:
            result = assign_plan_with_retry(
                session,
                org_id,
                target_plan_id,
                expected_plan_id,
                max_attempts=self._max_apply_attempts,
                delay=self._apply_retry_delay,
            )
        except PlanAssignmentError as exc:
            session.rollback()
            result = None
            error = str(exc)

        order = get_order(session, order_id, for_update=True)
        if order is None:
            raise OrderNotFoundError(orderId=str(order_id))
        if order_state(order) is not UpgradeState.VERIFIED:
            logger.warning("Order %s left VERIFIED before apply; now %s.", order_id, order.status)
            return self._release(session, order)
        transition(order, UpgradeState.APPLYING)
        order.apply_attempts = (order.apply_attempts or 0) + (result.attempts if result else 1)

        if result is not None and result.applied:
            transition(order, UpgradeState.APPLIED)
            order.applied_at = datetime.now(timezone.utc)
            order.failure_reason = None
        else:
            if error is None:
                error = (
                    f"Plan changed before apply: expected {expected_plan_id}, "
                    f"found {result.current_plan_id if result else 'unknown'}."
                )
            transition(order, UpgradeState.APPLY_FAILED, reason=error)
            order.failure_reason = error
            order.needs_reconciliation = True

        attempt = attempt_from_order(order)
        context = self._audit_context(order)
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Commit of plan apply failed for order %s", order_id)
            return self._record_apply_failure(session, order_id, f"commit failed: {exc}")

        if attempt.state is UpgradeState.APPLIED:
            payment_metrics.record_outcome(UpgradeState.APPLIED)
            logger.info("Org %s moved to plan %s by order %s.", org_id, target_plan_id, order_id)
        else:
            self._report_apply_failure(context, error)
        return attempt

    def _record_apply_failure(self, session: Session, order_id: uuid.UUID, reason: str) -> UpgradeAttempt:
        order = get_order(session, order_id, for_update=True)
        if order is None:
            raise OrderNotFoundError(orderId=str(order_id))
        transition(order, UpgradeState.APPLYING)
        transition(order, UpgradeState.APPLY_FAILED, reason=reason)
        order.failure_reason = reason
        order.needs_reconciliation = True
        order.apply_attempts = (order.apply_attempts or 0) + 1
        attempt = attempt_from_order(order)
        context = self._audit_context(order)
        session.commit()
        self._report_apply_failure(context, reason)
        return attempt

    def _report_apply_failure(self, context: Dict[str, Any], reason: Optional[str]) -> None:
        logger.critical(
            "Payment captured but plan apply failed for order %s (org=%s payment=%s): %s",
            context["orderId"],
            context["orgId"],
            context["paymentId"],
            reason,
        )
        append_payment_audit_entry(event="apply_failed", context=context, message=reason)
        payment_metrics.record_outcome(UpgradeState.APPLY_FAILED)
        payment_metrics.record_reconciliation_flag(UpgradeState.APPLY_FAILED)

    @staticmethod
    def _audit_context(order: PaymentOrder) -> Dict[str, Any]:
        return {
            "orderId": str(order.id),
            "orgId": str(order.org_id),
            "gatewayOrderId": order.gateway_order_id,
            "paymentId": order.gateway_payment_id,
            "targetPlanId": str(order.target_plan_id),
            "expectedPlanId": str(order.expected_plan_id),
            "amountMinor": order.amount_minor,
            "currency": order.currency,
            "status": order.status,
        }


__all__ = [
    "UpgradeAttempt",
    "UpgradeOrchestrator",
    "attempt_from_order",
    "handle_from_order",
]
