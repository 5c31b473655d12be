"""Shared fixtures.

Every test starts from fresh singletons: catalog, cart store, order
repository, checkout sessions, sandbox gateway and auth gate.
"""

import pytest

from storefront.application.auth_gate import TokenVerifier, reset_auth_gate
from storefront.application.cart_service import CartStore, reset_cart_store
from storefront.application.checkout_service import (
    CheckoutSessionRepository,
    reset_session_repository,
)
from storefront.application.order_service import reset_order_repository
from storefront.domain.actors import Admin, Anonymous, AuthenticatedUser
from storefront.domain.value_objects import Money
from storefront.infrastructure.catalog import Product, ProductCatalog, reset_catalog
from storefront.infrastructure.order_repository import InMemoryOrderRepository
from storefront.infrastructure.payment_gateway import (
    SandboxPaymentGateway,
    reset_payment_gateway,
)

TEST_SECRET = "test-auth-secret-shared-with-accounts"


def make_products() -> list[Product]:
    return [
        Product(id="laptop", name="Laptop", price=Money(99900), stock=5),
        Product(id="mouse", name="Mouse", price=Money(2500), stock=10),
        Product(id="cable", name="Cable", price=Money(999), stock=1),
        Product(id="sticker", name="Sticker", price=Money(0), stock=100),
        Product(id="monitor", name="Monitor", price=Money(32900), stock=0),
    ]


@pytest.fixture(autouse=True)
def catalog() -> ProductCatalog:
    """Fresh catalog with test products."""
    return reset_catalog(make_products())


@pytest.fixture(autouse=True)
def gateway() -> SandboxPaymentGateway:
    """Fresh sandbox gateway installed as the global gateway."""
    sandbox = SandboxPaymentGateway()
    reset_payment_gateway(sandbox)
    return sandbox


@pytest.fixture(autouse=True)
def cart_store(catalog: ProductCatalog) -> CartStore:
    """Fresh in-memory cart store installed as the global store."""
    return reset_cart_store(catalog=catalog)


@pytest.fixture(autouse=True)
def order_repository() -> InMemoryOrderRepository:
    """Fresh in-memory order repository."""
    repository = InMemoryOrderRepository()
    reset_order_repository(repository)
    return repository


@pytest.fixture(autouse=True)
def session_repository() -> CheckoutSessionRepository:
    """Fresh checkout session repository."""
    return reset_session_repository()


@pytest.fixture(autouse=True)
def verifier() -> TokenVerifier:
    """Token verifier sharing the secret of the global auth gate."""
    reset_auth_gate(TEST_SECRET)
    return TokenVerifier(TEST_SECRET)


@pytest.fixture
def buyer() -> AuthenticatedUser:
    """Signed-in buyer with an address."""
    return AuthenticatedUser(
        user_id="user-1",
        name="Ada Buyer",
        email="ada@example.com",
        address="1 Main Street, Springfield",
    )


@pytest.fixture
def buyer_without_address() -> AuthenticatedUser:
    """Signed-in buyer with no address on file."""
    return AuthenticatedUser(user_id="user-2", name="No Address", email="na@example.com")


@pytest.fixture
def admin() -> Admin:
    """Signed-in admin."""
    return Admin(user_id="admin-1", name="Admin", email="admin@example.com", address="HQ")


@pytest.fixture
def guest() -> Anonymous:
    """Anonymous visitor with a browser context."""
    return Anonymous(session_id="browser-1")
