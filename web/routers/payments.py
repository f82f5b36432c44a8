"""Payment endpoints driving self-service plan upgrades through Razorpay."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import get_db
from schemas.api.payments import (
    CheckoutOutcomeRequest,
    PaymentVerifyRequest,
    RazorpayConfigResponse,
    UpgradeAttemptResponse,
    UpgradeCreateRequest,
)
from services.payments import get_razorpay_public_config, verify_webhook_signature
from services.payments.checkout import CheckoutAuthorized, CheckoutFailed, parse_checkout_outcome
from services.payments.errors import (
    OrderNotFoundError,
    OrganizationNotFoundError,
    PlanNotFoundError,
    UpgradeError,
)
from services.payments.payment_audit import append_payment_audit_entry
from services.payments.upgrade_orchestrator import UpgradeOrchestrator
from services.plan_serializers import serialize_attempt
from web.deps import get_upgrade_orchestrator, require_uuid, upgrade_http_error

router = APIRouter(prefix="/payments", tags=["Payments"])

logger = logging.getLogger(__name__)

_CAPTURE_EVENTS = {"payment.captured", "order.paid"}
_FAILURE_EVENTS = {"payment.failed"}


@router.get("/razorpay/config", response_model=RazorpayConfigResponse, summary="Return checkout widget settings.")
async def read_razorpay_config() -> RazorpayConfigResponse:
    try:
        config = get_razorpay_public_config()
    except RuntimeError as exc:
        logger.warning("Razorpay config unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "payments.config_unavailable", "message": str(exc)},
        ) from exc
    return RazorpayConfigResponse(**config)


@router.post(
    "/upgrades",
    response_model=UpgradeAttemptResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a plan upgrade and mint the checkout order.",
)
async def create_upgrade(
    payload: UpgradeCreateRequest,
    db: Session = Depends(get_db),
    orchestrator: UpgradeOrchestrator = Depends(get_upgrade_orchestrator),
) -> UpgradeAttemptResponse:
    org_id = require_uuid(payload.orgId, OrganizationNotFoundError, "orgId")
    plan_id = require_uuid(payload.planId, PlanNotFoundError, "planId")
    metadata: Dict[str, Any] = {}
    if payload.customerName:
        metadata["name"] = payload.customerName
    if payload.customerEmail:
        metadata["email"] = payload.customerEmail
    try:
        attempt = await orchestrator.begin_upgrade(
            db,
            org_id=org_id,
            plan_id=plan_id,
            period=payload.period,
            metadata=metadata,
        )
    except UpgradeError as exc:
        logger.info("Upgrade refused for org=%s plan=%s: %s", org_id, plan_id, exc.code)
        raise upgrade_http_error(exc) from exc
    return serialize_attempt(attempt)


@router.get(
    "/orders/{order_id}",
    response_model=UpgradeAttemptResponse,
    summary="Return the state of a payment order.",
)
def read_order(
    order_id: str,
    db: Session = Depends(get_db),
    orchestrator: UpgradeOrchestrator = Depends(get_upgrade_orchestrator),
) -> UpgradeAttemptResponse:
    order_uuid = require_uuid(order_id, OrderNotFoundError, "orderId")
    try:
        attempt = orchestrator.get_attempt(db, order_uuid)
    except UpgradeError as exc:
        raise upgrade_http_error(exc) from exc
    return serialize_attempt(attempt)


@router.post(
    "/orders/{order_id}/outcome",
    response_model=UpgradeAttemptResponse,
    summary="Report the checkout outcome (authorization, failure or dismissal).",
)
def report_checkout_outcome(
    order_id: str,
    payload: CheckoutOutcomeRequest,
    db: Session = Depends(get_db),
    orchestrator: UpgradeOrchestrator = Depends(get_upgrade_orchestrator),
) -> UpgradeAttemptResponse:
    order_uuid = require_uuid(order_id, OrderNotFoundError, "orderId")
    try:
        outcome = parse_checkout_outcome(payload.model_dump(exclude_none=True, exclude_defaults=True))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "payments.outcome_invalid", "message": str(exc)},
        ) from exc
    try:
        attempt = orchestrator.resolve_checkout(db, order_id=order_uuid, outcome=outcome)
    except UpgradeError as exc:
        raise upgrade_http_error(exc) from exc
    return serialize_attempt(attempt)


@router.post(
    "/verify",
    response_model=UpgradeAttemptResponse,
    summary="Verify a checkout authorization and apply the plan.",
)
def verify_payment(
    payload: PaymentVerifyRequest,
    db: Session = Depends(get_db),
    orchestrator: UpgradeOrchestrator = Depends(get_upgrade_orchestrator),
) -> UpgradeAttemptResponse:
    outcome = CheckoutAuthorized(
        order_id=payload.razorpay_order_id,
        payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
    )
    try:
        attempt = orchestrator.resolve_gateway_outcome(
            db,
            gateway_order_id=payload.razorpay_order_id,
            outcome=outcome,
        )
    except UpgradeError as exc:
        raise upgrade_http_error(exc) from exc
    return serialize_attempt(attempt)


def _payment_entity(event: Dict[str, Any]) -> Dict[str, Any]:
    payload = event.get("payload") or {}
    payment = payload.get("payment") or {}
    entity = payment.get("entity") if isinstance(payment, dict) else None
    return entity if isinstance(entity, dict) else {}


def _order_entity(event: Dict[str, Any]) -> Dict[str, Any]:
    payload = event.get("payload") or {}
    order = payload.get("order") or {}
    entity = order.get("entity") if isinstance(order, dict) else None
    return entity if isinstance(entity, dict) else {}


def _gateway_order_id(event: Dict[str, Any]) -> Optional[str]:
    return _payment_entity(event).get("order_id") or _order_entity(event).get("id")


@router.post(
    "/razorpay/webhook",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Receive Razorpay webhooks.",
)
async def handle_razorpay_webhook(
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: UpgradeOrchestrator = Depends(get_upgrade_orchestrator),
) -> Dict[str, str]:
    raw_body = await request.body()
    signature = request.headers.get("x-razorpay-signature")
    event_id = request.headers.get("x-razorpay-event-id")
    if not signature:
        logger.warning("Razorpay webhook missing signature header. eventId=%s", event_id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "payments.webhook_signature_missing", "message": "The webhook signature header is missing."},
        )

    try:
        is_valid = verify_webhook_signature(raw_body, signature)
    except RuntimeError as exc:
        logger.error("Razorpay webhook signature verification unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "payments.webhook_signature_unavailable", "message": str(exc)},
        ) from exc
    if not is_valid:
        logger.warning("Razorpay webhook signature invalid. eventId=%s", event_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "payments.webhook_signature_invalid", "message": "The webhook signature is invalid."},
        )

    try:
        event = json.loads(raw_body.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("Razorpay webhook payload decode failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "payments.webhook_payload_invalid", "message": "The webhook body is not valid JSON."},
        ) from exc

    event_type = event.get("event")
    gateway_order_id = _gateway_order_id(event)
    log_context = {"event_id": event_id, "event_type": event_type, "gateway_order_id": gateway_order_id}
    logger.info("Received Razorpay webhook.", extra={"webhook": log_context})

    if event_type not in _CAPTURE_EVENTS | _FAILURE_EVENTS or not gateway_order_id:
        append_payment_audit_entry(event="webhook_ignored", context=log_context)
        return {"status": "accepted"}

    entity = _payment_entity(event)
    try:
        if event_type in _CAPTURE_EVENTS:
            attempt = orchestrator.confirm_captured_payment(
                db,
                gateway_order_id=gateway_order_id,
                payment_id=str(entity.get("id") or ""),
            )
        else:
            attempt = orchestrator.resolve_gateway_outcome(
                db,
                gateway_order_id=gateway_order_id,
                outcome=CheckoutFailed(
                    reason=str(entity.get("error_description") or "Payment failed"),
                    code=entity.get("error_code"),
                    payment_id=entity.get("id"),
                ),
            )
    except OrderNotFoundError:
        logger.warning("Razorpay webhook for unknown order.", extra={"webhook": log_context})
        append_payment_audit_entry(event="webhook_unknown_order", context=log_context)
        return {"status": "accepted"}

    append_payment_audit_entry(
        event="webhook_processed",
        context={**log_context, "order_id": str(attempt.order_id), "state": attempt.state.value},
    )
    return {"status": "accepted"}


__all__ = ["router"]
