from __future__ import annotations

from fastapi.testclient import TestClient

from web.main import app


def test_health_endpoints_report_database(engine) -> None:
    client = TestClient(app)

    status_response = client.get("/api/v1/health/status")
    assert status_response.status_code == 200
    assert status_response.json() == {
        "status": "ok",
        "database": {"ok": True},
        "payments": {"configured": True},
    }

    liveness = client.get("/healthz")
    assert liveness.status_code == 200
    assert liveness.json()["status"] == "ok"


def test_health_status_degrades_without_gateway_keys(engine, monkeypatch) -> None:
    monkeypatch.delenv("RAZORPAY_WEBHOOK_SECRET", raising=False)

    body = TestClient(app).get("/api/v1/health/status").json()

    assert body["status"] == "degraded"
    assert body["database"] == {"ok": True}
    assert body["payments"] == {"configured": False, "missing": ["RAZORPAY_WEBHOOK_SECRET"]}


def test_metrics_exposes_upgrade_counters() -> None:
    response = TestClient(app).get("/metrics")
    assert response.status_code == 200
    assert "plan_upgrade_outcomes_total" in response.text
