"""Domain exceptions.

All domain-level errors that represent business rule violations.
These are raised by entities, state machines and application services,
and translated into HTTP responses at the API boundary.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    Attributes:
        message: Human-readable error message.
        details: Additional error context.
    """

    error_code = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when an invalid state transition is attempted."""

    error_code = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "CheckoutSession", "Order").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


# ============================================================================
# Authentication Errors
# ============================================================================


class AuthError(DomainError):
    """Base class for authentication and authorization errors."""

    pass


class UnauthenticatedError(AuthError):
    """Raised when an operation requires a signed-in actor."""

    error_code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Please Login to checkout") -> None:
        super().__init__(message)


class ForbiddenError(AuthError):
    """Raised when a signed-in actor lacks the admin role."""

    error_code = "FORBIDDEN"

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"User {user_id} is not allowed to perform this action",
            details={"user_id": user_id},
        )


# ============================================================================
# Cart / Catalog Errors
# ============================================================================


class CartError(DomainError):
    """Base class for cart-related errors."""

    pass


class EmptyCartError(CartError):
    """Raised when trying to check out an empty cart."""

    error_code = "EMPTY_CART"

    def __init__(self, cart_key: str) -> None:
        super().__init__(
            "Your Cart Is Empty",
            details={"cart_key": cart_key},
        )


class MissingAddressError(CartError):
    """Raised when the buyer has no shipping address on file."""

    error_code = "MISSING_ADDRESS"

    def __init__(self, user_id: str) -> None:
        super().__init__(
            "Please update your address before checkout",
            details={"user_id": user_id},
        )


class ProductNotFoundError(CartError):
    """Raised when a product id is not in the catalog."""

    error_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str) -> None:
        super().__init__(
            f"Product not found: {product_id}",
            details={"product_id": product_id},
        )


class OutOfStockError(CartError):
    """Raised when a product has less stock than the cart asks for."""

    error_code = "OUT_OF_STOCK"

    def __init__(self, product_id: str, name: str) -> None:
        super().__init__(
            f"Product is out of stock: {name}",
            details={"product_id": product_id},
        )


# ============================================================================
# Payment Errors
# ============================================================================


class PaymentError(DomainError):
    """Base class for payment-related errors."""

    pass


class GatewayUnavailableError(PaymentError):
    """Raised when the payment gateway cannot issue a client token in time."""

    error_code = "GATEWAY_UNAVAILABLE"

    def __init__(self, message: str = "Error fetching payment token") -> None:
        super().__init__(message)


class GatewayError(PaymentError):
    """Raised when the gateway rejects or fails a payment operation."""

    error_code = "GATEWAY_ERROR"


class CardValidationError(PaymentError):
    """Raised when card input cannot be turned into a nonce."""

    error_code = "CARD_VALIDATION_ERROR"


class StaleNonceError(PaymentError):
    """Raised when a nonce is submitted a second time."""

    error_code = "STALE_NONCE"

    def __init__(self) -> None:
        super().__init__("Payment method nonce has already been used")


class PaymentTokenExpiredError(PaymentError):
    """Raised when the client token loaded for a session is no longer honored."""

    error_code = "TOKEN_EXPIRED"

    def __init__(self) -> None:
        super().__init__("Payment token expired, please reload it")


# ============================================================================
# Order Errors
# ============================================================================


class OrderError(DomainError):
    """Base class for order-related errors."""

    pass


class EmptyOrderError(OrderError):
    """Raised when an order would have no items."""

    error_code = "EMPTY_ORDER"

    def __init__(self) -> None:
        super().__init__("Cart items are required")


class OrderNotFoundError(OrderError):
    """Raised when an order id is unknown."""

    error_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str) -> None:
        super().__init__(
            "Order not found",
            details={"order_id": order_id},
        )


class PersistenceError(OrderError):
    """Raised when an order cannot be written.

    Carries the payment transaction id when money was captured before
    the write failed, so support can reconcile it.
    """

    error_code = "PERSISTENCE_ERROR"

    def __init__(self, message: str, transaction_id: str | None = None) -> None:
        super().__init__(message, details={"transaction_id": transaction_id})
        self.transaction_id = transaction_id


# ============================================================================
# Checkout Errors
# ============================================================================


class CheckoutError(DomainError):
    """Base class for checkout session errors."""

    pass


class CheckoutSessionNotFoundError(CheckoutError):
    """Raised when a checkout session id is unknown."""

    error_code = "CHECKOUT_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Checkout not found: {session_id}",
            details={"session_id": session_id},
        )


# ============================================================================
# Money Errors
# ============================================================================


class NegativeMoneyError(DomainError):
    """Raised when attempting to create money with negative amount."""

    error_code = "NEGATIVE_MONEY"

    def __init__(self, amount: int) -> None:
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            details={"amount": amount},
        )
