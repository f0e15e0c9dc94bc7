import pytest
from aggregator.main import app
from fastapi.testclient import TestClient

pytestmark = pytest.mark.integration


def test_health() -> None:
    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "aggregator"}
