"""API schemas for the storefront API.

Pydantic models for request/response validation and serialization.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from storefront.domain.entities import AuditEntry, CheckoutSession, Order
from storefront.domain.value_objects import Money, ProductRef


# ============================================================================
# Common Schemas
# ============================================================================


class PriceSchema(BaseModel):
    """Price representation."""

    amount: int = Field(..., description="Amount in smallest currency unit (cents)")
    currency: str = Field(default="USD", description="Currency code")
    formatted: str = Field(..., description="Display string, e.g. $12.99")

    @classmethod
    def from_money(cls, money: Money) -> "PriceSchema":
        return cls(amount=money.amount_cents, currency=money.currency, formatted=str(money))


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: Any = Field(default_factory=list, description="Additional error details")
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


class AuditEntrySchema(BaseModel):
    """Audit trail entry."""

    timestamp: datetime = Field(..., description="When the change happened")
    action: str = Field(..., description="Action performed")
    from_status: str | None = Field(default=None, description="Previous status")
    to_status: str | None = Field(default=None, description="New status")
    actor: str | None = Field(default=None, description="Who made the change")
    details: dict[str, Any] | None = Field(default=None, description="Additional details")

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntrySchema":
        return cls(
            timestamp=entry.timestamp,
            action=entry.action,
            from_status=entry.from_status,
            to_status=entry.to_status,
            actor=entry.actor,
            details=entry.details,
        )


# ============================================================================
# Cart Schemas
# ============================================================================


class CartItemSchema(BaseModel):
    """Product in a cart."""

    product_id: str = Field(..., description="Catalog product identifier")
    name: str = Field(..., description="Product name")
    price: PriceSchema = Field(..., description="Unit price")
    unit: str = Field(default="each", description="Sales unit")

    @classmethod
    def from_ref(cls, ref: ProductRef) -> "CartItemSchema":
        return cls(
            product_id=ref.product_id,
            name=ref.name,
            price=PriceSchema.from_money(ref.price),
            unit=ref.unit,
        )


class CartResponse(BaseModel):
    """Cart contents."""

    cart_key: str | None = Field(default=None, description="Actor key owning the cart")
    items: list[CartItemSchema] = Field(default_factory=list, description="Cart items")
    item_count: int = Field(..., description="Number of items")
    total: PriceSchema = Field(..., description="Sum of item prices")
    message: str | None = Field(default=None, description="Confirmation or empty-cart message")


class AddCartItemRequest(BaseModel):
    """Request to add a product to the cart."""

    product_id: str = Field(..., min_length=1, description="Catalog product identifier")


# ============================================================================
# Payment Schemas
# ============================================================================


class ClientTokenResponse(BaseModel):
    """Gateway client token for the browser drop-in."""

    client_token: str = Field(..., description="Opaque gateway client token")
    issued_at: datetime = Field(..., description="When the token was issued")
    expires_at: datetime | None = Field(default=None, description="Token expiry")


class HostedFieldsSchema(BaseModel):
    """Card fields collected by the gateway's hosted fields."""

    number: str = Field(..., description="Card number")
    expiration_date: str = Field(..., description="Expiry as MM/YY")
    cvv: str = Field(..., description="Card verification value")
    postal_code: str | None = Field(default=None, description="Billing postal code")


class SubmitPaymentRequest(BaseModel):
    """Request to pay for the cart.

    Either a nonce obtained in the browser or hosted field input that the
    gateway tokenizes.
    """

    nonce: str | None = Field(default=None, description="Single-use payment method nonce")
    hosted_fields: HostedFieldsSchema | None = Field(
        default=None, description="Hosted field input to tokenize"
    )


# ============================================================================
# Checkout Schemas
# ============================================================================


class CheckoutResponse(BaseModel):
    """Checkout session state."""

    id: str = Field(..., description="Checkout session identifier")
    status: str = Field(..., description="Session status")
    can_submit: bool = Field(..., description="Whether the Make Payment action is enabled")
    client_token: str | None = Field(default=None, description="Gateway client token")
    redirect_to: str | None = Field(default=None, description="Where the browser should go next")
    return_to: str | None = Field(default=None, description="Where to return after login")
    error_code: str | None = Field(default=None, description="Code of the last failure")
    message: str | None = Field(default=None, description="Message of the last failure")
    order_id: str | None = Field(default=None, description="Order created by this checkout")
    transaction_id: str | None = Field(default=None, description="Payment transaction id")
    duplicate: bool = Field(default=False, description="Submission ignored as a duplicate")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    audit_trail: list[AuditEntrySchema] = Field(default_factory=list, description="State changes")

    @classmethod
    def from_session(cls, session: CheckoutSession, duplicate: bool = False) -> "CheckoutResponse":
        return cls(
            id=str(session.id),
            status=session.status.value,
            can_submit=session.can_submit,
            client_token=session.client_token.value if session.client_token else None,
            redirect_to=session.redirect_to,
            return_to=session.return_to,
            error_code=session.last_error_code,
            message=session.last_error,
            order_id=session.order_id,
            transaction_id=session.transaction_id,
            duplicate=duplicate,
            created_at=session.created_at,
            updated_at=session.updated_at,
            audit_trail=[AuditEntrySchema.from_entry(e) for e in session.audit_trail],
        )


# ============================================================================
# Order Schemas
# ============================================================================


class OrderLineSchema(BaseModel):
    """Product and the price it was sold at."""

    product_id: str = Field(..., description="Catalog product identifier")
    name: str = Field(..., description="Product name at purchase time")
    price: PriceSchema = Field(..., description="Price snapshot")
    unit: str = Field(default="each", description="Sales unit")


class PaymentSchema(BaseModel):
    """Gateway sale result."""

    transaction_id: str = Field(..., description="Gateway transaction id")
    status: str = Field(..., description="Gateway transaction status")
    success: bool = Field(..., description="Whether the charge went through")
    amount: PriceSchema = Field(..., description="Amount charged")
    message: str | None = Field(default=None, description="Gateway message")


class OrderResponse(BaseModel):
    """Order details."""

    id: str = Field(..., description="Order identifier")
    buyer_id: str = Field(..., description="Buyer user id")
    buyer_name: str = Field(..., description="Buyer name")
    status: str = Field(..., description="Fulfillment status")
    lines: list[OrderLineSchema] = Field(..., description="Purchased products")
    total: PriceSchema = Field(..., description="Order total")
    payment: PaymentSchema = Field(..., description="Payment result")
    status_history: list[AuditEntrySchema] = Field(default_factory=list, description="Status changes")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=str(order.id),
            buyer_id=order.buyer_id,
            buyer_name=order.buyer_name,
            status=order.status.value,
            lines=[
                OrderLineSchema(
                    product_id=line.product_id,
                    name=line.name,
                    price=PriceSchema.from_money(line.price),
                    unit=line.unit,
                )
                for line in order.lines
            ],
            total=PriceSchema.from_money(order.total),
            payment=PaymentSchema(
                transaction_id=order.payment.transaction_id,
                status=order.payment.status,
                success=order.payment.success,
                amount=PriceSchema.from_money(order.payment.amount),
                message=order.payment.message,
            ),
            status_history=[AuditEntrySchema.from_entry(e) for e in order.status_history],
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrdersListResponse(BaseModel):
    """List of orders, newest first."""

    items: list[OrderResponse] = Field(default_factory=list, description="Orders")
    total: int = Field(..., description="Number of orders")


class UpdateOrderStatusRequest(BaseModel):
    """Request to change an order's fulfillment status."""

    status: str | None = Field(default=None, description="Target status, e.g. Shipped")


class UpdateOrderStatusResponse(BaseModel):
    """Result of a status update."""

    message: str = Field(..., description="Confirmation message")
    order: OrderResponse = Field(..., description="Updated order")
