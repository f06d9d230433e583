"""Shared fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from acp_checkout.dependencies import reset_dependencies
from acp_checkout.infrastructure.config import settings
from acp_checkout.main import app


@pytest.fixture(autouse=True)
def reset_services():
    """Start every test from empty stores."""
    reset_dependencies()
    yield
    reset_dependencies()


@pytest.fixture
def client() -> TestClient:
    """Create test client without authentication."""
    return TestClient(app)


@pytest.fixture
def auth_client() -> TestClient:
    """Create test client with valid API key authentication."""
    return TestClient(
        app,
        headers={"Authorization": f"Bearer {settings.acp_api_key}"},
    )


@pytest.fixture
def address_payload() -> dict:
    return {
        "name": "Ada Lovelace",
        "line_one": "1 Analytical Way",
        "city": "London",
        "country": "GB",
        "postal_code": "N1 9GU",
    }


@pytest.fixture
def ready_session(auth_client: TestClient, address_payload: dict) -> dict:
    """A session that is ready for payment (total 1200)."""
    response = auth_client.post(
        "/checkout_sessions",
        json={
            "items": [{"id": "sku1", "quantity": 2, "unit_price_cents": 500}],
            "fulfillment_address": address_payload,
        },
    )
    assert response.status_code == 201
    return response.json()
