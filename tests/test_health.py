from fastapi.testclient import TestClient

from notification_engine.main import app


def test_health() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_system_health_reports_engine_wiring() -> None:
    client = TestClient(app)
    response = client.get("/api/v1/system/health")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["store_backend"] == "memory"
    assert body["channels"] == ["email", "sms", "push", "in_app"]
    assert body["scheduler_enabled"] is False
    assert body["dispatches_in_flight"] == 0
