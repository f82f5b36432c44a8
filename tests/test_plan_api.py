from __future__ import annotations

from typing import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from database import get_db
from services.plan_assignment_service import assign_plan
from web.routers.plan import router as plan_router


@pytest.fixture()
def plan_client(session_factory) -> Iterator[TestClient]:
    def _override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app = FastAPI()
    app.include_router(plan_router, prefix="/api/v1")
    app.dependency_overrides[get_db] = _override_db
    client = TestClient(app)
    try:
        yield client
    finally:
        client.close()


def test_list_plans(plan_client: TestClient, catalog) -> None:
    response = plan_client.get("/api/v1/plans")
    assert response.status_code == 200
    plans = response.json()["plans"]
    assert [plan["slug"] for plan in plans] == ["free", "professional", "enterprise"]

    free, professional, enterprise = plans
    assert free["isDefault"] is True
    assert free["storageLabel"] == "5GB"
    assert professional["storageLabel"] == "500GB"
    assert enterprise["storageLabel"] == "Unlimited"
    assert enterprise["maxUsers"] is None
    monthly = next(p for p in professional["pricings"] if p["billingPeriod"] == "monthly")
    assert monthly["currency"] == "USD"
    assert monthly["displayPrice"] == "$29"


def test_read_organization_plan(plan_client: TestClient, org) -> None:
    response = plan_client.get(f"/api/v1/orgs/{org.id}/plan")
    assert response.status_code == 200
    payload = response.json()
    assert payload["orgName"] == "Acme Labs"
    assert payload["plan"]["slug"] == "free"
    assert payload["usage"] == {
        "users": 2,
        "apps": 1,
        "usersRemaining": 3,
        "appsRemaining": 2,
        "withinLimits": True,
    }


def test_read_organization_plan_not_found(plan_client: TestClient, catalog) -> None:
    response = plan_client.get("/api/v1/orgs/00000000-0000-0000-0000-000000000000/plan")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "orgs.not_found"
    assert plan_client.get("/api/v1/orgs/not-a-uuid/plan").status_code == 404


def test_plan_options_offer_actions(plan_client: TestClient, org) -> None:
    response = plan_client.get(f"/api/v1/orgs/{org.id}/plan/options", params={"period": "yearly"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["period"] == "yearly"
    actions = {option["plan"]["slug"]: option["action"] for option in payload["options"]}
    assert actions == {"free": "current", "professional": "upgrade", "enterprise": "contact"}
    professional = next(option for option in payload["options"] if option["plan"]["slug"] == "professional")
    assert professional["pricing"]["displayPrice"] == "$290"
    enterprise = next(option for option in payload["options"] if option["plan"]["slug"] == "enterprise")
    assert enterprise["pricing"] is None


def test_plan_options_flag_downgrades_and_exceeded_limits(plan_client: TestClient, db_session, org, catalog) -> None:
    assign_plan(db_session, org.id, catalog["professional"].id, catalog["free"].id)
    org.user_count = 8
    db_session.commit()

    payload = plan_client.get(f"/api/v1/orgs/{org.id}/plan/options").json()

    free = next(option for option in payload["options"] if option["plan"]["slug"] == "free")
    assert free["action"] == "downgrade"
    assert free["exceededLimits"] == ["users"]


def test_downgrade_request(plan_client: TestClient, db_session, org, catalog) -> None:
    assign_plan(db_session, org.id, catalog["professional"].id, catalog["free"].id)
    db_session.commit()

    response = plan_client.post(
        f"/api/v1/orgs/{org.id}/plan/downgrade-request",
        json={"planId": str(catalog["free"].id)},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["kind"] == "downgrade"
    assert payload["supportEmail"] == "support@cynayd.com"
    assert payload["subject"] == "Plan Downgrade Request - Professional to Free"
    assert payload["mailtoUrl"].startswith("mailto:support@cynayd.com?subject=")


def test_downgrade_request_for_upgrade_is_refused(plan_client: TestClient, org, catalog) -> None:
    response = plan_client.post(
        f"/api/v1/orgs/{org.id}/plan/downgrade-request",
        json={"planId": str(catalog["professional"].id)},
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "plans.not_a_downgrade"


def test_contact_request(plan_client: TestClient, org, catalog) -> None:
    response = plan_client.post(
        f"/api/v1/orgs/{org.id}/plan/contact-request",
        json={"planId": str(catalog["enterprise"].id), "period": "monthly"},
    )
    assert response.status_code == 200
    assert response.json()["kind"] == "contact_sales"
    assert response.json()["subject"] == "Plan Inquiry - Enterprise"

    missing = plan_client.post(
        f"/api/v1/orgs/{org.id}/plan/contact-request",
        json={"planId": "not-a-uuid"},
    )
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "plans.not_found"
