from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Dict, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import select

from database import get_db
from models.org import Org
from payment_fakes import TEST_KEY_ID, TEST_WEBHOOK_SECRET, sign
from web.deps import get_upgrade_orchestrator
from web.routers.payments import router as payments_router


@pytest.fixture()
def payments_client(session_factory, orchestrator) -> Iterator[TestClient]:
    """FastAPI test client wired to the test database and the fake gateway."""

    def _override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app = FastAPI()
    app.include_router(payments_router, prefix="/api/v1")
    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_upgrade_orchestrator] = lambda: orchestrator
    client = TestClient(app)
    try:
        yield client
    finally:
        client.close()


def _start_upgrade(client: TestClient, org, plan, **extra: Any) -> Dict[str, Any]:
    payload = {"orgId": str(org.id), "planId": str(plan.id), "period": "monthly", **extra}
    response = client.post("/api/v1/payments/upgrades", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _webhook(client: TestClient, event: Dict[str, Any], *, secret: str = TEST_WEBHOOK_SECRET):
    body = json.dumps(event).encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return client.post(
        "/api/v1/payments/razorpay/webhook",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Razorpay-Signature": signature,
            "X-Razorpay-Event-Id": "evt_test",
        },
    )


def _captured_event(gateway_order_id: str, payment_id: str = "pay_hook") -> Dict[str, Any]:
    return {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": payment_id, "order_id": gateway_order_id, "status": "captured"}}},
    }


def _current_plan_id(db_session, org_id):
    return db_session.scalar(select(Org.plan_id).where(Org.id == org_id))


def test_read_razorpay_config(payments_client: TestClient) -> None:
    response = payments_client.get("/api/v1/payments/razorpay/config")
    assert response.status_code == 200
    assert response.json() == {"keyId": TEST_KEY_ID, "brandName": "CYNAYD One"}


def test_razorpay_config_missing(payments_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("RAZORPAY_KEY_ID", raising=False)
    response = payments_client.get("/api/v1/payments/razorpay/config")
    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "payments.config_unavailable"


def test_create_upgrade_returns_checkout_options(payments_client: TestClient, org, catalog) -> None:
    payload = _start_upgrade(
        payments_client,
        org,
        catalog["professional"],
        customerName="Ada",
        customerEmail="ada@acme.test",
    )

    assert payload["state"] == "checkout_open"
    assert payload["order"]["amount"] == 2900
    assert payload["order"]["displayAmount"] == "$29"
    assert payload["order"]["currency"] == "USD"
    options = payload["checkoutOptions"]
    assert options["key"] == TEST_KEY_ID
    assert options["order_id"] == payload["order"]["gatewayOrderId"]
    assert options["prefill"] == {"name": "Ada", "email": "ada@acme.test"}
    assert [entry["to"] for entry in payload["history"]] == ["order_created", "checkout_open"]
    assert payload["history"][0]["from"] == "idle"


def test_create_upgrade_refusals(payments_client: TestClient, org, catalog, gateway) -> None:
    response = payments_client.post(
        "/api/v1/payments/upgrades",
        json={"orgId": str(org.id), "planId": str(catalog["enterprise"].id)},
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "plans.contact_sales"

    response = payments_client.post(
        "/api/v1/payments/upgrades",
        json={"orgId": "not-a-uuid", "planId": str(catalog["professional"].id)},
    )
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "orgs.not_found"

    response = payments_client.post(
        "/api/v1/payments/upgrades",
        json={"orgId": str(org.id), "planId": str(catalog["professional"].id), "period": "weekly"},
    )
    assert response.status_code == 422
    assert gateway.calls == []


def test_second_upgrade_conflicts(payments_client: TestClient, org, catalog) -> None:
    first = _start_upgrade(payments_client, org, catalog["professional"])
    response = payments_client.post(
        "/api/v1/payments/upgrades",
        json={"orgId": str(org.id), "planId": str(catalog["professional"].id)},
    )
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "payments.upgrade_in_progress"
    assert detail["orderId"] == first["orderId"]


def test_verify_applies_plan(payments_client: TestClient, db_session, org, catalog) -> None:
    started = _start_upgrade(payments_client, org, catalog["professional"])
    gateway_order_id = started["order"]["gatewayOrderId"]

    response = payments_client.post(
        "/api/v1/payments/verify",
        json={
            "razorpay_order_id": gateway_order_id,
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": sign(gateway_order_id, "pay_1"),
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["state"] == "applied"
    assert payload["paymentId"] == "pay_1"
    assert payload["order"] is None
    assert _current_plan_id(db_session, org.id) == catalog["professional"].id


def test_verify_rejects_tampered_signature(payments_client: TestClient, db_session, org, catalog) -> None:
    started = _start_upgrade(payments_client, org, catalog["professional"])

    response = payments_client.post(
        "/api/v1/payments/verify",
        json={
            "razorpay_order_id": started["order"]["gatewayOrderId"],
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": "deadbeef",
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["state"] == "verification_failed"
    assert payload["needsReconciliation"] is True
    assert _current_plan_id(db_session, org.id) == catalog["free"].id


def test_verify_unknown_order(payments_client: TestClient, catalog) -> None:
    response = payments_client.post(
        "/api/v1/payments/verify",
        json={"razorpay_order_id": "order_missing", "razorpay_payment_id": "pay_1", "razorpay_signature": "x"},
    )
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "payments.order_not_found"


def test_report_outcome_and_read_order(payments_client: TestClient, org, catalog) -> None:
    started = _start_upgrade(payments_client, org, catalog["professional"])
    order_url = f"/api/v1/payments/orders/{started['orderId']}"

    current = payments_client.get(order_url)
    assert current.status_code == 200
    assert current.json()["state"] == "checkout_open"
    assert current.json()["order"]["gatewayOrderId"] == started["order"]["gatewayOrderId"]

    invalid = payments_client.post(f"{order_url}/outcome", json={})
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["code"] == "payments.outcome_invalid"

    dismissed = payments_client.post(f"{order_url}/outcome", json={"dismissed": True})
    assert dismissed.status_code == 200
    assert dismissed.json()["state"] == "user_dismissed"

    missing = payments_client.get("/api/v1/payments/orders/00000000-0000-0000-0000-000000000000")
    assert missing.status_code == 404
    assert payments_client.get("/api/v1/payments/orders/not-a-uuid").status_code == 404


def test_report_failed_outcome(payments_client: TestClient, org, catalog) -> None:
    started = _start_upgrade(payments_client, org, catalog["professional"])
    response = payments_client.post(
        f"/api/v1/payments/orders/{started['orderId']}/outcome",
        json={"error": {"code": "BAD_REQUEST_ERROR", "description": "Card declined"}},
    )
    assert response.status_code == 200
    assert response.json()["state"] == "gateway_failed"
    assert response.json()["reason"] == "Card declined"


def test_webhook_requires_signature(payments_client: TestClient) -> None:
    response = payments_client.post("/api/v1/payments/razorpay/webhook", content=b"{}")
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "payments.webhook_signature_missing"

    response = _webhook(payments_client, {"event": "payment.captured"}, secret="wrong-secret")
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "payments.webhook_signature_invalid"


def test_webhook_capture_applies_plan(payments_client: TestClient, db_session, org, catalog, payment_env) -> None:
    started = _start_upgrade(payments_client, org, catalog["professional"])

    response = _webhook(payments_client, _captured_event(started["order"]["gatewayOrderId"]))

    assert response.status_code == 202
    assert response.json() == {"status": "accepted"}
    assert _current_plan_id(db_session, org.id) == catalog["professional"].id
    order = payments_client.get(f"/api/v1/payments/orders/{started['orderId']}").json()
    assert order["state"] == "applied"
    assert order["paymentId"] == "pay_hook"

    replay = _webhook(payments_client, _captured_event(started["order"]["gatewayOrderId"]))
    assert replay.status_code == 202
    events = [json.loads(line)["event"] for line in payment_env.read_text(encoding="utf-8").splitlines()]
    assert events == ["webhook_processed", "webhook_processed"]


def test_webhook_payment_failed(payments_client: TestClient, org, catalog) -> None:
    started = _start_upgrade(payments_client, org, catalog["professional"])
    event = {
        "event": "payment.failed",
        "payload": {
            "payment": {
                "entity": {
                    "id": "pay_declined",
                    "order_id": started["order"]["gatewayOrderId"],
                    "error_code": "BAD_REQUEST_ERROR",
                    "error_description": "Insufficient funds",
                }
            }
        },
    }

    assert _webhook(payments_client, event).status_code == 202
    order = payments_client.get(f"/api/v1/payments/orders/{started['orderId']}").json()
    assert order["state"] == "gateway_failed"
    assert order["reason"] == "Insufficient funds"


def test_webhook_unknown_and_ignored_events(payments_client: TestClient, catalog, payment_env) -> None:
    assert _webhook(payments_client, _captured_event("order_missing")).status_code == 202
    assert _webhook(payments_client, {"event": "refund.created", "payload": {}}).status_code == 202

    events = [json.loads(line)["event"] for line in payment_env.read_text(encoding="utf-8").splitlines()]
    assert events == ["webhook_unknown_order", "webhook_ignored"]
