"""Plan catalog and organisation plan endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from core.plan_constants import BillingPeriod
from database import get_db
from schemas.api.plan import (
    BillingPeriodValue,
    ContactTicketResponse,
    OrganizationPlanResponse,
    PlanContactRequest,
    PlanListResponse,
    PlanOptionSchema,
    PlanOptionsResponse,
)
from services.payments.errors import OrganizationNotFoundError, PlanNotFoundError, UpgradeError
from services.plan_catalog_service import exceeded_limits, get_organization_plan, list_plans
from services.plan_contact_service import request_contact_sales, request_downgrade
from services.plan_serializers import (
    serialize_contact_ticket,
    serialize_organization_plan,
    serialize_plan,
    serialize_pricing,
)
from services.plan_tiers import resolve_plan_action
from web.deps import require_uuid, upgrade_http_error

router = APIRouter(tags=["Plan"])

logger = logging.getLogger(__name__)


@router.get("/plans", response_model=PlanListResponse, summary="List catalog plans.")
def read_plans(
    active_only: bool = Query(default=True, alias="activeOnly"),
    db: Session = Depends(get_db),
) -> PlanListResponse:
    return PlanListResponse(plans=[serialize_plan(plan) for plan in list_plans(db, active_only=active_only)])


@router.get(
    "/orgs/{org_id}/plan",
    response_model=OrganizationPlanResponse,
    summary="Return the organisation's active plan and usage headroom.",
)
def read_organization_plan(org_id: str, db: Session = Depends(get_db)) -> OrganizationPlanResponse:
    org_uuid = require_uuid(org_id, OrganizationNotFoundError, "orgId")
    org_plan = get_organization_plan(db, org_uuid)
    if org_plan is None:
        raise upgrade_http_error(OrganizationNotFoundError(orgId=org_id))
    return serialize_organization_plan(org_plan)


@router.get(
    "/orgs/{org_id}/plan/options",
    response_model=PlanOptionsResponse,
    summary="List every active plan with the action offered for the billing period.",
)
def read_plan_options(
    org_id: str,
    period: BillingPeriodValue = Query(default="monthly"),
    db: Session = Depends(get_db),
) -> PlanOptionsResponse:
    org_uuid = require_uuid(org_id, OrganizationNotFoundError, "orgId")
    org_plan = get_organization_plan(db, org_uuid)
    if org_plan is None:
        raise upgrade_http_error(OrganizationNotFoundError(orgId=org_id))
    billing_period = BillingPeriod(period)
    options = []
    for plan in list_plans(db, active_only=True):
        pricing = plan.pricing_for(billing_period)
        options.append(
            PlanOptionSchema(
                plan=serialize_plan(plan),
                action=resolve_plan_action(org_plan.plan, plan, billing_period).value,
                pricing=serialize_pricing(pricing) if pricing else None,
                exceededLimits=list(exceeded_limits(plan, org_plan.usage)),
            )
        )
    return PlanOptionsResponse(
        orgId=str(org_plan.org_id),
        period=billing_period.value,
        currentPlanId=str(org_plan.plan.id),
        options=options,
    )


@router.post(
    "/orgs/{org_id}/plan/downgrade-request",
    response_model=ContactTicketResponse,
    status_code=status.HTTP_200_OK,
    summary="Prepare a support request for a downgrade.",
)
def create_downgrade_request(
    org_id: str,
    payload: PlanContactRequest,
    db: Session = Depends(get_db),
) -> ContactTicketResponse:
    org_uuid = require_uuid(org_id, OrganizationNotFoundError, "orgId")
    plan_uuid = require_uuid(payload.planId, PlanNotFoundError, "planId")
    try:
        ticket = request_downgrade(db, org_id=org_uuid, candidate_plan_id=plan_uuid, period=payload.period)
    except UpgradeError as exc:
        logger.info("Downgrade request refused for org=%s: %s", org_id, exc.code)
        raise upgrade_http_error(exc) from exc
    return serialize_contact_ticket(ticket)


@router.post(
    "/orgs/{org_id}/plan/contact-request",
    response_model=ContactTicketResponse,
    summary="Prepare a support request for a plan without self-service pricing.",
)
def create_contact_request(
    org_id: str,
    payload: PlanContactRequest,
    db: Session = Depends(get_db),
) -> ContactTicketResponse:
    org_uuid = require_uuid(org_id, OrganizationNotFoundError, "orgId")
    plan_uuid = require_uuid(payload.planId, PlanNotFoundError, "planId")
    try:
        ticket = request_contact_sales(db, org_id=org_uuid, candidate_plan_id=plan_uuid, period=payload.period)
    except UpgradeError as exc:
        logger.info("Contact request refused for org=%s: %s", org_id, exc.code)
        raise upgrade_http_error(exc) from exc
    return serialize_contact_ticket(ticket)


__all__ = ["router"]
