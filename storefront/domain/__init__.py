"""Domain layer - Entities, value objects, actors, state machines.

This module exports the core domain building blocks:

- **Entities**: Objects with identity (CheckoutSession, Order)
- **Value Objects**: Immutable objects compared by value (Money, ProductRef, typed IDs)
- **Actors**: Who is making a request (Anonymous, AuthenticatedUser, Admin)
- **State Machines**: Deterministic state transitions (CheckoutStatus, OrderStatus)
- **Exceptions**: Domain-specific errors and invariant violations

Example usage:
    from storefront.domain import Money, Order, PaymentResult, ProductRef

    laptop = ProductRef(product_id="laptop-pro-14", name="Laptop", price=Money(99900))
    payment = PaymentResult(
        transaction_id="tx1",
        status="submitted_for_settlement",
        success=True,
        amount=Money(99900),
    )
    order = Order.create(buyer_id="u1", buyer_name="Ada", items=[laptop], payment=payment)
    print(order.total)  # $999.00
"""

# Base classes
from storefront.domain.base import AggregateRoot, Entity, ValueObject

# Actors
from storefront.domain.actors import Actor, Admin, Anonymous, AuthenticatedUser

# Entities
from storefront.domain.entities import AuditEntry, CheckoutSession, Order, OrderLine

# Exceptions
from storefront.domain.exceptions import (
    CardValidationError,
    CheckoutSessionNotFoundError,
    DomainError,
    EmptyCartError,
    EmptyOrderError,
    ForbiddenError,
    GatewayError,
    GatewayUnavailableError,
    InvalidStateTransitionError,
    MissingAddressError,
    OrderNotFoundError,
    OutOfStockError,
    PaymentTokenExpiredError,
    PersistenceError,
    ProductNotFoundError,
    StaleNonceError,
    UnauthenticatedError,
)

# State Machines
from storefront.domain.state_machines import CheckoutStatus, OrderStatus

# Value Objects
from storefront.domain.value_objects import (
    CheckoutSessionId,
    Money,
    OrderId,
    PaymentNonce,
    PaymentResult,
    PaymentToken,
    ProductRef,
)

__all__ = [
    # Base
    "AggregateRoot",
    "Entity",
    "ValueObject",
    # Actors
    "Actor",
    "Admin",
    "Anonymous",
    "AuthenticatedUser",
    # Entities
    "AuditEntry",
    "CheckoutSession",
    "Order",
    "OrderLine",
    # Exceptions
    "CardValidationError",
    "CheckoutSessionNotFoundError",
    "DomainError",
    "EmptyCartError",
    "EmptyOrderError",
    "ForbiddenError",
    "GatewayError",
    "GatewayUnavailableError",
    "InvalidStateTransitionError",
    "MissingAddressError",
    "OrderNotFoundError",
    "OutOfStockError",
    "PaymentTokenExpiredError",
    "PersistenceError",
    "ProductNotFoundError",
    "StaleNonceError",
    "UnauthenticatedError",
    # State Machines
    "CheckoutStatus",
    "OrderStatus",
    # Value Objects
    "CheckoutSessionId",
    "Money",
    "OrderId",
    "PaymentNonce",
    "PaymentResult",
    "PaymentToken",
    "ProductRef",
]
