"""Support tickets for plan changes that are not self-service (downgrades, contact-us plans)."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError
from sqlalchemy.orm import Session

from core.env import env_str
from core.plan_constants import BillingPeriod, TierComparison
from services.payments.errors import (
    ContactTicketError,
    NotADowngradeError,
    NoUpgradeAvailableError,
    OrganizationNotFoundError,
    PlanNotFoundError,
)
from services.plan_catalog_service import OrganizationPlan, PlanRecord, exceeded_limits, get_organization_plan, get_plan
from services.plan_tiers import PlanAction, compare_tiers, resolve_plan_action

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parent.parent
CONTACT_TEMPLATE_DIR = REPO_ROOT / "templates" / "contact"
DEFAULT_SUPPORT_EMAIL = "support@cynayd.com"

KIND_DOWNGRADE = "downgrade"
KIND_CONTACT_SALES = "contact_sales"

_ENV: Optional[Environment] = None


@dataclass(frozen=True, slots=True)
class ContactTicket:
    """A pre-filled support request; nothing is sent on the caller's behalf."""

    kind: str
    support_email: str
    subject: str
    body: str
    mailto_url: str
    org_id: uuid.UUID
    current_plan: str
    requested_plan: str


def _get_env() -> Environment:
    global _ENV  # pylint: disable=global-statement
    if _ENV is None:
        _ENV = Environment(
            loader=FileSystemLoader(CONTACT_TEMPLATE_DIR),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )
    return _ENV


def support_email() -> str:
    return env_str("SUPPORT_EMAIL", DEFAULT_SUPPORT_EMAIL) or DEFAULT_SUPPORT_EMAIL


def build_mailto_url(recipient: str, subject: str, body: str) -> str:
    return f"mailto:{recipient}?subject={quote(subject)}&body={quote(body)}"


def _render(template: str, context: Dict[str, Any]) -> str:
    try:
        return _get_env().get_template(template).render(**context).strip()
    except TemplateError as exc:
        logger.error("Contact template %s failed to render: %s", template, exc)
        raise ContactTicketError(template=template) from exc


def _load(session: Session, org_id: Any, plan_id: Any) -> tuple[OrganizationPlan, PlanRecord]:
    org_plan = get_organization_plan(session, org_id)
    if org_plan is None:
        raise OrganizationNotFoundError(orgId=str(org_id))
    candidate = get_plan(session, plan_id)
    if candidate is None or not candidate.is_active:
        raise PlanNotFoundError(planId=str(plan_id))
    return org_plan, candidate


def _ticket(
    kind: str,
    template: str,
    subject: str,
    org_plan: OrganizationPlan,
    candidate: PlanRecord,
    extra: Dict[str, Any],
) -> ContactTicket:
    recipient = support_email()
    body = _render(
        template,
        {
            "org_name": org_plan.org_name,
            "org_id": str(org_plan.org_id),
            "current_plan": org_plan.plan.name,
            "requested_plan": candidate.name,
            **extra,
        },
    )
    return ContactTicket(
        kind=kind,
        support_email=recipient,
        subject=subject,
        body=body,
        mailto_url=build_mailto_url(recipient, subject, body),
        org_id=org_plan.org_id,
        current_plan=org_plan.plan.name,
        requested_plan=candidate.name,
    )


def request_downgrade(
    session: Session,
    *,
    org_id: Any,
    candidate_plan_id: Any,
    period: BillingPeriod | str = BillingPeriod.MONTHLY,
) -> ContactTicket:
    """Prepare the support request for moving to a lower tier.

    Downgrades never mint orders or touch the plan assignment; support handles
    them by hand. Raises ``NotADowngradeError`` when ``candidate_plan_id`` does
    not rank below the current plan.
    """
    org_plan, candidate = _load(session, org_id, candidate_plan_id)
    billing_period = BillingPeriod(period)
    if compare_tiers(org_plan.plan, candidate, billing_period) is not TierComparison.DOWNGRADE:
        raise NotADowngradeError(planId=str(candidate.id))
    subject = f"Plan Downgrade Request - {org_plan.plan.name} to {candidate.name}"
    ticket = _ticket(
        KIND_DOWNGRADE,
        "downgrade_request.txt.j2",
        subject,
        org_plan,
        candidate,
        {"period": billing_period.value, "exceeded": list(exceeded_limits(candidate, org_plan.usage))},
    )
    logger.info("Prepared downgrade request for org=%s %s -> %s", org_plan.org_id, org_plan.plan.slug, candidate.slug)
    return ticket


def request_contact_sales(
    session: Session,
    *,
    org_id: Any,
    candidate_plan_id: Any,
    period: BillingPeriod | str = BillingPeriod.MONTHLY,
) -> ContactTicket:
    """Prepare the support request for an upgrade that has no self-service price."""
    org_plan, candidate = _load(session, org_id, candidate_plan_id)
    billing_period = BillingPeriod(period)
    if resolve_plan_action(org_plan.plan, candidate, billing_period) is not PlanAction.CONTACT:
        raise NoUpgradeAvailableError("The selected plan does not require contacting sales.", planId=str(candidate.id))
    subject = f"Plan Inquiry - {candidate.name}"
    ticket = _ticket(
        KIND_CONTACT_SALES,
        "contact_sales.txt.j2",
        subject,
        org_plan,
        candidate,
        {"period": billing_period.value},
    )
    logger.info("Prepared contact-sales request for org=%s plan=%s", org_plan.org_id, candidate.slug)
    return ticket


__all__ = [
    "CONTACT_TEMPLATE_DIR",
    "ContactTicket",
    "DEFAULT_SUPPORT_EMAIL",
    "KIND_CONTACT_SALES",
    "KIND_DOWNGRADE",
    "build_mailto_url",
    "request_contact_sales",
    "request_downgrade",
    "support_email",
]
