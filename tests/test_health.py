def test_basic_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["queue_backend"] == "memory"


def test_detailed_health_reports_database_and_queue(client, task_queue):
    resp = client.get("/health/detailed")
    assert resp.status_code == 200
    body = resp.json()
    assert body["checks"]["database"] == "healthy"
    assert body["checks"]["queue"]["backend"] == "memory"
    assert body["checks"]["queue"]["depth"] == 0
    assert "redis" not in body["checks"]


def test_root_lists_service(client):
    resp = client.get("/")
    assert resp.status_code == 200


def test_responses_carry_request_id(client):
    resp = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers.get("X-Request-ID") == "req-123"
