"""Read-side helpers for the plan catalog and organisation plan assignments."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.plan_constants import FREE_PLAN_SLUG, BillingPeriod
from models.org import Org
from models.plan import Plan, PlanPricing

logger = get_logger(__name__)

_DEFAULT_CURRENCY = "INR"


def coerce_uuid(value: Any) -> Optional[uuid.UUID]:
    """Parse ids arriving as strings, UUIDs or ``None``; malformed input yields ``None``."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError, AttributeError):
        return None


@dataclass(frozen=True, slots=True)
class PricingRecord:
    id: uuid.UUID
    plan_id: uuid.UUID
    billing_period: BillingPeriod
    price: Decimal
    currency: str


@dataclass(frozen=True, slots=True)
class PlanRecord:
    """Immutable snapshot of a catalog plan with normalised numeric values."""

    id: uuid.UUID
    slug: str
    name: str
    description: Optional[str]
    max_users: Optional[int]
    max_apps: Optional[int]
    max_storage_bytes: Optional[int]
    is_default: bool
    is_active: bool
    sort_order: int
    pricings: tuple[PricingRecord, ...] = ()

    @property
    def is_free(self) -> bool:
        return self.slug == FREE_PLAN_SLUG

    def pricing_for(self, period: BillingPeriod | str) -> Optional[PricingRecord]:
        target = BillingPeriod(period)
        for pricing in self.pricings:
            if pricing.billing_period == target:
                return pricing
        return None

    def pricing_by_id(self, pricing_id: uuid.UUID) -> Optional[PricingRecord]:
        for pricing in self.pricings:
            if pricing.id == pricing_id:
                return pricing
        return None


@dataclass(frozen=True, slots=True)
class PlanUsage:
    users: int
    apps: int
    users_remaining: Optional[int]
    apps_remaining: Optional[int]

    @property
    def within_limits(self) -> bool:
        return all(value is None or value >= 0 for value in (self.users_remaining, self.apps_remaining))


@dataclass(frozen=True, slots=True)
class OrganizationPlan:
    org_id: uuid.UUID
    org_name: str
    plan: PlanRecord
    usage: PlanUsage


class CatalogError(ValueError):
    """Raised when catalog data cannot be normalised."""


def normalize_money(value: Any) -> Decimal:
    """Coerce strings, numbers and opaque big-number objects into ``Decimal``."""
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool) or value is None:
        raise CatalogError(f"Invalid price value: {value!r}")
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(repr(value))
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise CatalogError(f"Invalid price value: {value!r}") from exc
    if not amount.is_finite():
        raise CatalogError(f"Invalid price value: {value!r}")
    return amount


def normalize_storage(value: Any) -> Optional[int]:
    """Return the storage ceiling in bytes; empty and zero values mean unlimited."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        candidate = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            candidate = int(Decimal(text))
        except InvalidOperation as exc:
            raise CatalogError(f"Invalid storage value: {value!r}") from exc
    return candidate if candidate > 0 else None


def _normalize_currency(value: Optional[str]) -> str:
    text = (value or "").strip().upper()
    return text or _DEFAULT_CURRENCY


def _to_pricing_record(row: PlanPricing) -> Optional[PricingRecord]:
    try:
        period = BillingPeriod(str(row.billing_period).strip().lower())
    except ValueError:
        logger.warning("Ignoring pricing %s with unknown billing period %r.", row.id, row.billing_period)
        return None
    try:
        price = normalize_money(row.price)
    except CatalogError as exc:
        logger.warning("Ignoring pricing %s: %s", row.id, exc)
        return None
    return PricingRecord(
        id=row.id,
        plan_id=row.plan_id,
        billing_period=period,
        price=price,
        currency=_normalize_currency(row.currency),
    )


def to_plan_record(row: Plan) -> PlanRecord:
    pricings = []
    for pricing in row.pricings or []:
        record = _to_pricing_record(pricing)
        if record is not None:
            pricings.append(record)
    return PlanRecord(
        id=row.id,
        slug=str(row.slug).strip().lower(),
        name=row.name,
        description=row.description,
        max_users=row.max_users,
        max_apps=row.max_apps,
        max_storage_bytes=normalize_storage(row.max_storage_bytes),
        is_default=bool(row.is_default),
        is_active=bool(row.is_active),
        sort_order=row.sort_order or 0,
        pricings=tuple(pricings),
    )


def list_plans(session: Session, *, active_only: bool = True) -> List[PlanRecord]:
    """Return catalog plans ordered for display."""
    stmt = select(Plan).order_by(Plan.sort_order, Plan.name)
    if active_only:
        stmt = stmt.where(Plan.is_active.is_(True))
    return [to_plan_record(row) for row in session.scalars(stmt).all()]


def get_plan(session: Session, plan_id: Any) -> Optional[PlanRecord]:
    normalized = coerce_uuid(plan_id)
    if normalized is None:
        return None
    row = session.get(Plan, normalized)
    return to_plan_record(row) if row is not None else None


def get_plan_by_slug(session: Session, slug: str) -> Optional[PlanRecord]:
    row = session.scalars(select(Plan).where(Plan.slug == slug.strip().lower())).first()
    return to_plan_record(row) if row is not None else None


def resolve_default_plan(session: Session) -> PlanRecord:
    """Return the plan new organisations start on.

    Preference order: the active plan flagged ``is_default``, then the free plan,
    then the first active plan in display order.
    """
    plans = list_plans(session, active_only=True)
    for plan in plans:
        if plan.is_default:
            return plan
    for plan in plans:
        if plan.is_free:
            return plan
    if plans:
        return plans[0]
    raise CatalogError("The plan catalog has no active plans.")


def _remaining(limit: Optional[int], used: int) -> Optional[int]:
    if limit is None:
        return None
    return limit - used


def get_organization_plan(session: Session, org_id: Any) -> Optional[OrganizationPlan]:
    """Return the organisation's active plan plus usage headroom."""
    normalized = coerce_uuid(org_id)
    if normalized is None:
        return None
    org = session.get(Org, normalized, populate_existing=True)
    if org is None:
        return None
    plan_row = session.get(Plan, org.plan_id)
    if plan_row is None:  # pragma: no cover - guarded by the foreign key
        raise CatalogError(f"Organisation {org.id} points at a missing plan {org.plan_id}.")
    plan = to_plan_record(plan_row)
    users = int(org.user_count or 0)
    apps = int(org.app_count or 0)
    usage = PlanUsage(
        users=users,
        apps=apps,
        users_remaining=_remaining(plan.max_users, users),
        apps_remaining=_remaining(plan.max_apps, apps),
    )
    return OrganizationPlan(org_id=org.id, org_name=org.name, plan=plan, usage=usage)


def exceeded_limits(plan: PlanRecord, usage: PlanUsage) -> Sequence[str]:
    """Return the ceilings of ``plan`` the given usage would violate."""
    violations: list[str] = []
    if plan.max_users is not None and usage.users > plan.max_users:
        violations.append("users")
    if plan.max_apps is not None and usage.apps > plan.max_apps:
        violations.append("apps")
    return violations


__all__ = [
    "CatalogError",
    "OrganizationPlan",
    "PlanRecord",
    "PlanUsage",
    "PricingRecord",
    "coerce_uuid",
    "exceeded_limits",
    "get_organization_plan",
    "get_plan",
    "get_plan_by_slug",
    "list_plans",
    "normalize_money",
    "normalize_storage",
    "resolve_default_plan",
    "to_plan_record",
]
