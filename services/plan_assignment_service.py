"""Sole writer of the organisation -> plan assignment."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from core.env import env_float, env_int
from core.logging import get_logger
from models.org import Org
from models.plan import Plan
from services.plan_catalog_service import resolve_default_plan

logger = get_logger(__name__)

PLAN_APPLY_MAX_ATTEMPTS = env_int("PLAN_APPLY_MAX_ATTEMPTS", 3, minimum=1)
PLAN_APPLY_RETRY_DELAY_SECONDS = env_float("PLAN_APPLY_RETRY_DELAY_SECONDS", 0.2, minimum=0.0)


class AssignmentStatus(str, Enum):
    APPLIED = "applied"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class AssignmentResult:
    status: AssignmentStatus
    org_id: uuid.UUID
    plan_id: uuid.UUID
    current_plan_id: Optional[uuid.UUID]
    attempts: int = 1

    @property
    def applied(self) -> bool:
        return self.status is AssignmentStatus.APPLIED


class PlanAssignmentError(RuntimeError):
    """Raised when the assignment cannot be attempted at all (unknown org/plan, DB down)."""


def register_organization(
    session: Session,
    *,
    name: str,
    slug: Optional[str] = None,
    user_count: int = 0,
    app_count: int = 0,
) -> Org:
    """Create an organisation already assigned to the catalog default plan."""
    default_plan = resolve_default_plan(session)
    org = Org(
        name=name,
        slug=slug,
        plan_id=default_plan.id,
        plan_updated_at=datetime.now(timezone.utc),
        user_count=user_count,
        app_count=app_count,
    )
    session.add(org)
    session.flush()
    logger.info("Registered org %s on default plan %s.", org.id, default_plan.slug)
    return org


def assign_plan(
    session: Session,
    org_id: uuid.UUID,
    plan_id: uuid.UUID,
    expected_current_plan_id: uuid.UUID,
) -> AssignmentResult:
    """Compare-and-set the organisation plan; nothing is committed here."""
    if session.get(Plan, plan_id) is None:
        raise PlanAssignmentError(f"Unknown plan {plan_id}.")

    result = session.execute(
        update(Org)
        .where(Org.id == org_id, Org.plan_id == expected_current_plan_id)
        .values(plan_id=plan_id, plan_updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return AssignmentResult(
            status=AssignmentStatus.APPLIED,
            org_id=org_id,
            plan_id=plan_id,
            current_plan_id=plan_id,
        )

    current_plan_id = session.scalar(select(Org.plan_id).where(Org.id == org_id))
    if current_plan_id is None:
        raise PlanAssignmentError(f"Unknown organisation {org_id}.")
    logger.warning(
        "Plan assignment conflict for org=%s: expected=%s actual=%s target=%s",
        org_id,
        expected_current_plan_id,
        current_plan_id,
        plan_id,
    )
    return AssignmentResult(
        status=AssignmentStatus.CONFLICT,
        org_id=org_id,
        plan_id=plan_id,
        current_plan_id=current_plan_id,
    )


def assign_plan_with_retry(
    session: Session,
    org_id: uuid.UUID,
    plan_id: uuid.UUID,
    expected_current_plan_id: uuid.UUID,
    *,
    max_attempts: Optional[int] = None,
    delay: Optional[float] = None,
) -> AssignmentResult:
    """Retry ``assign_plan`` on transient database errors.

    A conflict is a definitive answer and is returned immediately. The session is
    rolled back between attempts, so callers must re-load any ORM objects they
    hold afterwards.
    """
    attempts = max(1, max_attempts or PLAN_APPLY_MAX_ATTEMPTS)
    wait = PLAN_APPLY_RETRY_DELAY_SECONDS if delay is None else delay
    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        try:
            result = assign_plan(session, org_id, plan_id, expected_current_plan_id)
        except OperationalError as exc:
            session.rollback()
            last_error = exc
            logger.warning("Plan assignment attempt %s/%s failed for org=%s: %s", attempt, attempts, org_id, exc)
            if attempt < attempts:
                time.sleep(wait)
                wait *= 2
            continue
        return AssignmentResult(
            status=result.status,
            org_id=result.org_id,
            plan_id=result.plan_id,
            current_plan_id=result.current_plan_id,
            attempts=attempt,
        )
    raise PlanAssignmentError(f"Plan assignment failed after {attempts} attempts: {last_error}") from last_error


__all__ = [
    "AssignmentResult",
    "AssignmentStatus",
    "PlanAssignmentError",
    "assign_plan",
    "assign_plan_with_retry",
    "register_organization",
]
