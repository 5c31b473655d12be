"""Shared fixtures for API tests."""

from typing import Any

import pytest
from fastapi.testclient import TestClient

from storefront.application.auth_gate import TokenVerifier
from storefront.main import app


@pytest.fixture
def client() -> TestClient:
    """Create test client without authentication."""
    return TestClient(app)


def bearer(verifier: TokenVerifier, **claims: Any) -> dict[str, str]:
    """Authorization header for a token with the given claims."""
    return {"Authorization": f"Bearer {verifier.sign(claims)}"}


@pytest.fixture
def buyer_headers(verifier: TokenVerifier) -> dict[str, str]:
    """Headers of a signed-in buyer with an address."""
    return bearer(
        verifier,
        sub="user-1",
        name="Ada Buyer",
        email="ada@example.com",
        address="1 Main Street, Springfield",
    )


@pytest.fixture
def admin_headers(verifier: TokenVerifier) -> dict[str, str]:
    """Headers of a signed-in admin."""
    return bearer(verifier, sub="admin-1", name="Admin", role="admin", address="HQ")
