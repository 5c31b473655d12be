"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Self
from uuid import UUID, uuid4

from storefront.domain.base import ValueObject, utc_now
from storefront.domain.exceptions import NegativeMoneyError


# ============================================================================
# Typed Identifiers
# ============================================================================


@dataclass(frozen=True)
class OrderId(ValueObject):
    """Strongly-typed order identifier."""

    value: UUID

    @classmethod
    def generate(cls) -> Self:
        """Generate a new order ID.

        Returns:
            New OrderId with random UUID.
        """
        return cls(value=uuid4())

    @classmethod
    def from_string(cls, value: str) -> Self:
        """Create OrderId from string representation.

        Args:
            value: String UUID representation.

        Returns:
            OrderId instance.
        """
        return cls(value=UUID(value))

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class CheckoutSessionId(ValueObject):
    """Strongly-typed checkout session identifier."""

    value: UUID

    @classmethod
    def generate(cls) -> Self:
        """Generate a new checkout session ID.

        Returns:
            New CheckoutSessionId with random UUID.
        """
        return cls(value=uuid4())

    @classmethod
    def from_string(cls, value: str) -> Self:
        """Create CheckoutSessionId from string representation.

        Args:
            value: String UUID representation.

        Returns:
            CheckoutSessionId instance.
        """
        return cls(value=UUID(value))

    def __str__(self) -> str:
        return str(self.value)


# ============================================================================
# Money
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """Represents monetary value with currency.

    Money is stored in the smallest currency unit (cents) to avoid
    floating-point precision issues.

    Attributes:
        amount_cents: Amount in smallest currency unit (e.g., cents).
        currency: ISO 4217 currency code.
    """

    amount_cents: int
    currency: str = "USD"

    def __post_init__(self) -> None:
        """Validate money constraints."""
        if self.amount_cents < 0:
            raise NegativeMoneyError(self.amount_cents)
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str = "USD") -> Self:
        """Create zero amount money."""
        return cls(amount_cents=0, currency=currency)

    @classmethod
    def from_decimal(cls, amount: Decimal, currency: str = "USD") -> Self:
        """Create money from decimal amount.

        Args:
            amount: Decimal amount in major units (e.g., dollars).
            currency: Currency code.

        Returns:
            Money instance.
        """
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return cls(amount_cents=cents, currency=currency)

    def to_decimal(self) -> Decimal:
        """Convert to decimal amount in major units.

        Returns:
            Decimal amount (e.g., dollars from cents).
        """
        return Decimal(self.amount_cents) / 100

    def __add__(self, other: "Money") -> "Money":
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot add {other.currency} to {self.currency}"
            )
        return Money(
            amount_cents=self.amount_cents + other.amount_cents,
            currency=self.currency,
        )

    def __str__(self) -> str:
        """Return formatted string representation (e.g. '$12.99')."""
        symbol = {"USD": "$"}.get(self.currency, "")
        return f"{symbol}{self.to_decimal():.2f}"

    def is_zero(self) -> bool:
        """Check if amount is zero."""
        return self.amount_cents == 0

    def is_positive(self) -> bool:
        """Check if amount is greater than zero."""
        return self.amount_cents > 0


def sum_money(amounts: list[Money], currency: str = "USD") -> Money:
    """Sum a list of Money values, returning zero for an empty list.

    Args:
        amounts: Values to add.
        currency: Currency of the zero value.

    Returns:
        Total as Money.
    """
    total = Money.zero(currency)
    for amount in amounts:
        total = total + amount
    return total


# ============================================================================
# Product Reference
# ============================================================================


@dataclass(frozen=True)
class ProductRef(ValueObject):
    """Reference to a catalog product with its price at a point in time.

    Used both as the cart member type and as the order line snapshot.

    Attributes:
        product_id: Catalog product identifier.
        name: Product display name.
        price: Unit price.
        unit: Sales unit label.
    """

    product_id: str
    name: str
    price: Money
    unit: str = "each"

    def __post_init__(self) -> None:
        if not self.product_id or not self.product_id.strip():
            raise ValueError("Product ID cannot be empty")

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage."""
        return {
            "product_id": self.product_id,
            "name": self.name,
            "price_cents": self.price.amount_cents,
            "currency": self.price.currency,
            "unit": self.unit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductRef":
        """Deserialize from storage."""
        return cls(
            product_id=data["product_id"],
            name=data["name"],
            price=Money(
                amount_cents=data["price_cents"],
                currency=data.get("currency", "USD"),
            ),
            unit=data.get("unit", "each"),
        )


# ============================================================================
# Payment Values
# ============================================================================


@dataclass(frozen=True)
class PaymentToken(ValueObject):
    """Short-lived client authorization token from the payment gateway.

    Attributes:
        value: Opaque token string handed to the browser.
        issued_at: When the token was obtained.
        expires_at: When the gateway stops honoring the token.
    """

    value: str
    issued_at: datetime = field(default_factory=utc_now)
    expires_at: datetime | None = None

    @classmethod
    def with_ttl(cls, value: str, ttl_seconds: int) -> "PaymentToken":
        """Create a token that expires ttl_seconds from now."""
        now = utc_now()
        return cls(value=value, issued_at=now, expires_at=now + timedelta(seconds=ttl_seconds))

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= self.expires_at


@dataclass(frozen=True)
class PaymentNonce(ValueObject):
    """Single-use token representing tokenized card details."""

    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PaymentResult(ValueObject):
    """Outcome of a gateway sale.

    Attributes:
        transaction_id: Gateway transaction identifier.
        status: Gateway transaction status (e.g., "submitted_for_settlement").
        success: Whether the charge went through.
        amount: Amount charged.
        message: Gateway message, if any.
    """

    transaction_id: str
    status: str
    success: bool
    amount: Money
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage and API responses."""
        return {
            "transaction_id": self.transaction_id,
            "status": self.status,
            "success": self.success,
            "amount_cents": self.amount.amount_cents,
            "currency": self.amount.currency,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaymentResult":
        """Deserialize from storage."""
        return cls(
            transaction_id=data["transaction_id"],
            status=data["status"],
            success=data["success"],
            amount=Money(
                amount_cents=data["amount_cents"],
                currency=data.get("currency", "USD"),
            ),
            message=data.get("message"),
        )
