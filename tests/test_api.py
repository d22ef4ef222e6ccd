from tests.conftest import SAMPLE_SPEC

PACKAGE = {
    "name": "Pets API",
    "spec_content": SAMPLE_SPEC,
    "base_url": "https://pets.example.com",
    "triggered_by": "pytest",
}


def create_package(test_client, **overrides):
    response = test_client.post("/api/v1/packages/", json={**PACKAGE, **overrides})
    assert response.status_code == 201
    return response.json()


def test_health_check(test_client):
    """Test health check endpoint"""
    response = test_client.get("/api/v1/health/")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
    assert "version" in data
    assert "environment" in data


def test_readiness_check(test_client):
    """Test readiness check endpoint"""
    response = test_client.get("/api/v1/health/readiness")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] == "ok"
    assert "ai_provider" in data["checks"]


def test_resilience_metrics_and_reset(test_client):
    response = test_client.get("/api/v1/health/resilience")
    assert response.status_code == 200
    metrics = response.json()["ai-provider"]
    assert metrics["circuit_breaker"]["state"] == "CLOSED"
    assert metrics["bulkhead"]["max_concurrent_calls"] == 5
    assert metrics["healthy"] is True

    assert test_client.post("/api/v1/health/resilience/ai-provider/reset").status_code == 200
    assert test_client.post("/api/v1/health/resilience/unknown/reset").status_code == 404


def test_create_and_get_package(test_client):
    created = create_package(test_client)

    assert created["status"] == "REQUESTED"
    assert created["spec_hash"]

    response = test_client.get(f"/api/v1/packages/{created['id']}")
    assert response.status_code == 200
    assert response.json()["name"] == "Pets API"


def test_create_package_validation(test_client):
    missing_spec = {key: value for key, value in PACKAGE.items() if key != "spec_content"}
    assert test_client.post("/api/v1/packages/", json=missing_spec).status_code == 422
    assert test_client.post("/api/v1/packages/", json={**PACKAGE, "base_url": "pets"}).status_code == 422


def test_get_unknown_package(test_client):
    response = test_client.get("/api/v1/packages/does-not-exist")
    assert response.status_code == 404


def test_advance_and_drive(test_client):
    created = create_package(test_client)

    advanced = test_client.post(f"/api/v1/packages/{created['id']}/advance")
    assert advanced.status_code == 200
    assert advanced.json()["status"] == "SPEC_FETCHED"

    driven = test_client.post(f"/api/v1/packages/{created['id']}/drive")
    assert driven.status_code == 200
    body = driven.json()
    assert body["status"] == "COMPLETE"
    assert body["qa_summary"]["fallback"] is False
    assert body["completed_at"] is not None


def test_cancel_then_invalid_transition(test_client):
    created = create_package(test_client)

    cancelled = test_client.post(f"/api/v1/packages/{created['id']}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    again = test_client.post(f"/api/v1/packages/{created['id']}/cancel")
    assert again.status_code == 409
    assert "CANCELLED" in again.json()["detail"]


def test_requeue(test_client):
    created = create_package(test_client)
    assert test_client.post(f"/api/v1/packages/{created['id']}/requeue").status_code == 409

    test_client.post(f"/api/v1/packages/{created['id']}/cancel")
    response = test_client.post(f"/api/v1/packages/{created['id']}/requeue", json={"triggered_by": "ops"})

    assert response.status_code == 201
    body = response.json()
    assert body["requeued_from"] == created["id"]
    assert body["triggered_by"] == "ops"
    assert body["status"] == "REQUESTED"


def test_list_filter_and_stats(test_client):
    first = create_package(test_client, name="first")
    create_package(test_client, name="second")
    test_client.post(f"/api/v1/packages/{first['id']}/cancel")

    cancelled = test_client.get("/api/v1/packages/", params={"status": "CANCELLED"})
    assert [p["name"] for p in cancelled.json()] == ["first"]

    stats = test_client.get("/api/v1/packages/stats").json()
    assert stats == {"total": 2, "by_status": {"CANCELLED": 1, "REQUESTED": 1}, "in_flight": 1, "terminal": 1}


def test_advance_incomplete(test_client):
    created = create_package(test_client)

    response = test_client.post("/api/v1/packages/advance-incomplete")

    assert response.status_code == 200
    assert response.json() == {created["id"]: "SPEC_FETCHED"}


def test_create_package_rejects_malformed_spec_url(test_client):
    response = test_client.post("/api/v1/packages/", json={**PACKAGE, "spec_url": "http://[::1/spec"})
    assert response.status_code == 422
