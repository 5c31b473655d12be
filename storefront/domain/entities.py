"""Domain entities for the storefront.

Contains the two aggregates of the checkout pipeline: the checkout
session (the orchestrator's state machine) and the order (the durable
record of a paid cart).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from storefront.domain.base import AggregateRoot, utc_now
from storefront.domain.exceptions import (
    EmptyOrderError,
    InvalidStateTransitionError,
    OrderError,
)
from storefront.domain.state_machines import (
    CheckoutStatus,
    OrderStatus,
    validate_checkout_transition,
    validate_order_transition,
)
from storefront.domain.value_objects import (
    CheckoutSessionId,
    Money,
    OrderId,
    PaymentNonce,
    PaymentResult,
    PaymentToken,
    ProductRef,
    sum_money,
)

# Redirect targets understood by the storefront front end
LOGIN_PATH = "/login"
CART_PATH = "/cart"
PROFILE_PATH = "/dashboard/user/profile"
ORDERS_PATH = "/dashboard/user/orders"


@dataclass(frozen=True)
class AuditEntry:
    """A single state change recorded on an aggregate."""

    action: str
    from_status: str | None
    to_status: str | None
    actor: str | None = None
    details: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=utc_now)


# ============================================================================
# Checkout Session Aggregate Root
# ============================================================================


@dataclass(kw_only=True, eq=False)
class CheckoutSession(AggregateRoot[CheckoutSessionId]):
    """One visit to the checkout page.

    The session owns the state machine the checkout orchestrator drives.
    ``epoch`` increases whenever a pending gateway call must be ignored
    (abandonment), so late responses can be recognized and dropped.

    Attributes:
        id: Session identifier.
        cart_key: Key of the cart being checked out.
        buyer_id: Signed-in buyer, if any.
        status: Current state.
        client_token: Gateway client token once loaded.
        epoch: Generation counter for discarding late responses.
        submitted_nonces: Every nonce already sent to the order API.
        last_error_code: Code of the most recent failure.
        last_error: Message of the most recent failure.
        redirect_to: Where the front end should navigate next.
        return_to: Where to come back to after a login detour.
        order_id: Order created by a successful submission.
        transaction_id: Gateway transaction of the successful submission.
    """

    id: CheckoutSessionId
    cart_key: str | None
    buyer_id: str | None = None
    status: CheckoutStatus = CheckoutStatus.IDLE
    client_token: PaymentToken | None = None
    epoch: int = 0
    submitted_nonces: set[str] = field(default_factory=set)
    last_error_code: str | None = None
    last_error: str | None = None
    redirect_to: str | None = None
    return_to: str | None = None
    order_id: str | None = None
    transaction_id: str | None = None
    audit_trail: list[AuditEntry] = field(default_factory=list)

    @classmethod
    def create(cls, cart_key: str | None, buyer_id: str | None = None) -> "CheckoutSession":
        """Create a session in IDLE state."""
        return cls(id=CheckoutSessionId.generate(), cart_key=cart_key, buyer_id=buyer_id)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _transition(
        self,
        target: CheckoutStatus,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        validate_checkout_transition(str(self.id), self.status, target)
        self.audit_trail.append(
            AuditEntry(
                action=action,
                from_status=self.status.value,
                to_status=target.value,
                actor=self.buyer_id,
                details=details,
            )
        )
        self.status = target
        self._touch()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def can_submit(self) -> bool:
        """Whether the "Make Payment" action is enabled."""
        return (
            self.status.accepts_payment()
            and self.client_token is not None
            and not self.client_token.is_expired()
        )

    @property
    def token_expired(self) -> bool:
        return self.client_token is not None and self.client_token.is_expired()

    def is_current(self, epoch: int) -> bool:
        """Check that a pending call started in ``epoch`` may still apply its result."""
        return self.epoch == epoch and self.status != CheckoutStatus.ABANDONED

    def has_submitted(self, nonce: PaymentNonce) -> bool:
        return nonce.value in self.submitted_nonces

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def block(
        self,
        error_code: str,
        message: str,
        redirect_to: str,
        return_to: str | None = None,
    ) -> None:
        """Refuse checkout entry and point the front end elsewhere."""
        self._transition(
            CheckoutStatus.BLOCKED,
            "blocked",
            {"error_code": error_code, "redirect_to": redirect_to},
        )
        self.last_error_code = error_code
        self.last_error = message
        self.redirect_to = redirect_to
        self.return_to = return_to

    def begin_token_load(self) -> int:
        """Enter TOKEN_LOADING from IDLE, FAILED, or READY with an expired token.

        Returns:
            Epoch the caller must present when applying the result.
        """
        self._transition(CheckoutStatus.TOKEN_LOADING, "token_requested")
        self.client_token = None
        self.last_error_code = None
        self.last_error = None
        return self.epoch

    def token_loaded(self, token: PaymentToken) -> None:
        """Enter READY with a client token."""
        self.client_token = token
        self._transition(CheckoutStatus.READY, "token_loaded")

    def token_failed(self, error_code: str, message: str) -> None:
        """Enter FAILED because no client token could be obtained."""
        self._transition(
            CheckoutStatus.FAILED,
            "token_failed",
            {"error_code": error_code},
        )
        self.last_error_code = error_code
        self.last_error = message

    def begin_submission(self) -> int:
        """Enter SUBMITTING.

        Returns:
            Epoch the caller must present when applying the result.

        Raises:
            InvalidStateTransitionError: If not READY or no live token is loaded.
        """
        if self.client_token is None or self.client_token.is_expired():
            raise InvalidStateTransitionError(
                entity_type="CheckoutSession",
                entity_id=str(self.id),
                current_state=self.status.value,
                target_state=CheckoutStatus.SUBMITTING.value,
            )
        self._transition(CheckoutStatus.SUBMITTING, "payment_submitted")
        self.last_error_code = None
        self.last_error = None
        return self.epoch

    def record_nonce(self, nonce: PaymentNonce) -> None:
        """Remember a nonce so it is never submitted again."""
        self.submitted_nonces.add(nonce.value)

    def succeed(self, order_id: str, transaction_id: str | None) -> None:
        """Enter SUCCESS after the order was recorded."""
        self._transition(
            CheckoutStatus.SUCCESS,
            "order_created",
            {"order_id": order_id, "transaction_id": transaction_id},
        )
        self.order_id = order_id
        self.transaction_id = transaction_id
        self.redirect_to = ORDERS_PATH

    def submission_failed(self, error_code: str, message: str) -> None:
        """Record a failed submission and reopen the session for retry.

        Passes through FAILED and lands in READY; the next attempt must
        request a new nonce.
        """
        self._transition(
            CheckoutStatus.FAILED,
            "payment_failed",
            {"error_code": error_code},
        )
        self.last_error_code = error_code
        self.last_error = message
        self._transition(CheckoutStatus.READY, "retry_enabled")

    def abandon(self) -> None:
        """Leave the checkout page; pending responses become stale."""
        self._transition(CheckoutStatus.ABANDONED, "abandoned")
        self.epoch += 1


# ============================================================================
# Order Aggregate Root
# ============================================================================


@dataclass(frozen=True)
class OrderLine:
    """A product and the price it was sold at.

    Frozen so the snapshot cannot change after the order is created.
    """

    product_id: str
    name: str
    price: Money
    unit: str = "each"

    @classmethod
    def snapshot(cls, product: ProductRef) -> "OrderLine":
        """Copy a product reference's current price into an order line."""
        return cls(
            product_id=product.product_id,
            name=product.name,
            price=Money(
                amount_cents=product.price.amount_cents,
                currency=product.price.currency,
            ),
            unit=product.unit,
        )


@dataclass(kw_only=True, eq=False)
class Order(AggregateRoot[OrderId]):
    """A paid cart.

    Attributes:
        id: Order identifier.
        buyer_id: User who placed the order.
        buyer_name: Buyer display name at purchase time.
        lines: Price snapshots, immutable after creation.
        payment: Gateway sale result.
        status: Fulfillment status, changed only by admins.
        status_history: Audit trail of status changes.
    """

    id: OrderId
    buyer_id: str
    buyer_name: str
    lines: tuple[OrderLine, ...]
    payment: PaymentResult
    status: OrderStatus = OrderStatus.NOT_PROCESSED
    status_history: list[AuditEntry] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        buyer_id: str,
        buyer_name: str,
        items: list[ProductRef],
        payment: PaymentResult,
    ) -> "Order":
        """Create an order, snapshotting each item's price.

        Raises:
            EmptyOrderError: If there are no items.
            OrderError: If the charged amount differs from the line total.
        """
        if not items:
            raise EmptyOrderError()
        lines = tuple(OrderLine.snapshot(item) for item in items)
        total = sum_money([line.price for line in lines])
        if payment.amount != total:
            raise OrderError(
                f"Charged amount {payment.amount} does not match order total {total}",
                details={
                    "transaction_id": payment.transaction_id,
                    "charged_cents": payment.amount.amount_cents,
                    "total_cents": total.amount_cents,
                },
            )
        order = cls(
            id=OrderId.generate(),
            buyer_id=buyer_id,
            buyer_name=buyer_name,
            lines=lines,
            payment=payment,
        )
        order.status_history.append(
            AuditEntry(
                action="created",
                from_status=None,
                to_status=OrderStatus.NOT_PROCESSED.value,
                actor="system",
                details={"transaction_id": payment.transaction_id},
            )
        )
        return order

    @property
    def total(self) -> Money:
        """Sum of the line price snapshots."""
        return sum_money([line.price for line in self.lines])

    @property
    def transaction_id(self) -> str:
        return self.payment.transaction_id

    def update_status(self, status: OrderStatus, actor: str | None = None) -> None:
        """Move the order to a new fulfillment status.

        Raises:
            InvalidStateTransitionError: If the move is not allowed.
        """
        validate_order_transition(str(self.id), self.status, status)
        self.status_history.append(
            AuditEntry(
                action="status_updated",
                from_status=self.status.value,
                to_status=status.value,
                actor=actor,
            )
        )
        self.status = status
        self._touch()
