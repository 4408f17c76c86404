from __future__ import annotations

from fastapi.testclient import TestClient

from users_service.main import app


def test_app_wires_lifecycle_manager_with_default_backends():
    with TestClient(app) as client:
        assert client.get("/healthz").json() == {"status": "ok"}

        created = client.post(
            "/v1/users",
            json={"email": "wired@x.com", "full_name": "W", "phone": "1", "password": "pw"},
        )
        assert created.status_code == 201

        metrics = client.get("/metrics")
        assert metrics.status_code == 200
        assert 'users_lifecycle_operations_total{operation="create",outcome="ok"}' in metrics.text
