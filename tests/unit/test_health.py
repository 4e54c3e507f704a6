"""
Tests for health check endpoints.
"""

from fastapi.testclient import TestClient

from bff.config import Settings
from bff.main import create_app


def test_healthz_endpoint(client):
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "onboarding-bff"}


def test_readyz_endpoint_configured(client):
    """Readiness reports configuration and coalescer state."""
    response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True

    checks = data["checks"]
    assert checks["supabase_config"]["ok"] is True
    assert checks["signing_secret"]["configured"] is True
    assert checks["coalescer"]["pending"] == 0


def test_readyz_endpoint_missing_supabase_config(backend):
    """Missing Supabase config is reported, but readyz still answers 200."""
    app = create_app(Settings(_env_file=None, SUPABASE_URL=None, SUPABASE_KEY=None), transport=backend.transport())

    with TestClient(app) as client:
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["supabase_config"]["ok"] is False
    assert "SUPABASE_URL not set" in data["checks"]["supabase_config"]["issues"]
    assert data["checks"]["signing_secret"]["configured"] is False


def test_responses_carry_correlation_id(client):
    response = client.get("/healthz", headers={"x-correlation-id": "corr-42"})

    assert response.headers["X-Correlation-Id"] == "corr-42"
