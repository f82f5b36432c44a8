from __future__ import annotations

from decimal import Decimal

import pytest

from models.plan import Plan
from services.plan_catalog_service import (
    CatalogError,
    exceeded_limits,
    get_organization_plan,
    get_plan_by_slug,
    list_plans,
    normalize_money,
    normalize_storage,
    resolve_default_plan,
)


class _BigNumber:
    """Stands in for driver-specific numeric wrappers that only expose ``__str__``."""

    def __init__(self, text: str) -> None:
        self._text = text

    def __str__(self) -> str:
        return self._text


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (Decimal("29.00"), Decimal("29.00")),
        (29, Decimal("29")),
        (29.5, Decimal("29.5")),
        (" 1999.99 ", Decimal("1999.99")),
        (_BigNumber("4999"), Decimal("4999")),
    ],
)
def test_normalize_money(raw, expected) -> None:
    assert normalize_money(raw) == expected


@pytest.mark.parametrize("raw", [None, True, "abc", "NaN", float("inf")])
def test_normalize_money_rejects_garbage(raw) -> None:
    with pytest.raises(CatalogError):
        normalize_money(raw)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, None),
        ("", None),
        (0, None),
        ("1073741824", 1073741824),
        (_BigNumber("536870912000"), 536870912000),
        (5368709120, 5368709120),
    ],
)
def test_normalize_storage(raw, expected) -> None:
    assert normalize_storage(raw) == expected


def test_list_plans_orders_and_normalises(db_session, catalog) -> None:
    plans = list_plans(db_session)
    assert [plan.slug for plan in plans] == ["free", "professional", "enterprise"]
    professional = plans[1]
    monthly = professional.pricing_for("monthly")
    assert monthly is not None
    assert monthly.price == Decimal("29.00")
    assert monthly.currency == "USD"
    assert plans[2].pricings == ()
    assert plans[2].max_storage_bytes is None


def test_list_plans_hides_inactive(db_session, catalog) -> None:
    catalog["enterprise"].is_active = False
    db_session.commit()
    assert [plan.slug for plan in list_plans(db_session)] == ["free", "professional"]
    assert len(list_plans(db_session, active_only=False)) == 3


def test_resolve_default_plan_prefers_flag_then_free(db_session, catalog) -> None:
    assert resolve_default_plan(db_session).slug == "free"
    catalog["free"].is_default = False
    db_session.commit()
    assert resolve_default_plan(db_session).slug == "free"


def test_resolve_default_plan_requires_active_plans(db_session) -> None:
    db_session.add(Plan(slug="legacy", name="Legacy", is_active=False))
    db_session.commit()
    with pytest.raises(CatalogError):
        resolve_default_plan(db_session)


def test_get_plan_by_slug_is_case_insensitive(db_session, catalog) -> None:
    assert get_plan_by_slug(db_session, " Professional ").name == "Professional"
    assert get_plan_by_slug(db_session, "missing") is None


def test_organization_plan_reports_headroom(db_session, org) -> None:
    org_plan = get_organization_plan(db_session, org.id)
    assert org_plan is not None
    assert org_plan.plan.slug == "free"
    assert org_plan.usage.users_remaining == 3
    assert org_plan.usage.apps_remaining == 2
    assert org_plan.usage.within_limits


def test_exceeded_limits(db_session, org, catalog) -> None:
    org.user_count = 12
    db_session.commit()
    org_plan = get_organization_plan(db_session, org.id)
    free = get_plan_by_slug(db_session, "free")
    enterprise = get_plan_by_slug(db_session, "enterprise")
    assert list(exceeded_limits(free, org_plan.usage)) == ["users"]
    assert list(exceeded_limits(enterprise, org_plan.usage)) == []


def test_organization_plan_unknown_org(db_session, catalog) -> None:
    assert get_organization_plan(db_session, "not-a-uuid") is None
