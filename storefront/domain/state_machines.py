"""State machines for domain entities.

Deterministic state machines that define valid state transitions
for checkout sessions and orders.
"""

from enum import Enum

from storefront.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Checkout State Machine
# ============================================================================


class CheckoutStatus(str, Enum):
    """Checkout session lifecycle states.

    State diagram:
        IDLE ──────────────────────────────────────► BLOCKED
          │
          │ begin (cart non-empty, buyer signed in)
          ▼
        TOKEN_LOADING ────────┬──────────────────► FAILED ──┐
          │        ▲          │                     │       │
          │        └──────────┼──── retry_token ────┘       │
          │ token received    │                             │
          ▼                   │                             │
        READY ◄───────────────┼──── submission failed ──────┘
          │                   │
          │ make payment      │
          ▼                   │
        SUBMITTING ───────────┘
          │
          │ payment captured + order recorded
          ▼
        SUCCESS

    READY goes back to TOKEN_LOADING when its client token has expired.
    Any non-terminal state may move to ABANDONED.
    """

    IDLE = "idle"
    BLOCKED = "blocked"
    TOKEN_LOADING = "token_loading"
    READY = "ready"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    FAILED = "failed"
    ABANDONED = "abandoned"

    def can_transition_to(self, target: "CheckoutStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _CHECKOUT_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["CheckoutStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return list(_CHECKOUT_TRANSITIONS.get(self, set()))

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state.

        Returns:
            True if no further transitions are possible.
        """
        return len(_CHECKOUT_TRANSITIONS.get(self, set())) == 0

    def is_in_flight(self) -> bool:
        """Check if the session is waiting on the gateway or order API.

        Returns:
            True while a token fetch or submission is pending.
        """
        return self in {CheckoutStatus.TOKEN_LOADING, CheckoutStatus.SUBMITTING}

    def accepts_payment(self) -> bool:
        """Check if the "Make Payment" action is enabled.

        Returns:
            True only when a client token is loaded and nothing is pending.
        """
        return self == CheckoutStatus.READY


# Checkout state transitions (defined outside enum to avoid Enum restrictions)
_CHECKOUT_TRANSITIONS: dict[CheckoutStatus, set[CheckoutStatus]] = {
    CheckoutStatus.IDLE: {
        CheckoutStatus.TOKEN_LOADING,
        CheckoutStatus.BLOCKED,
        CheckoutStatus.ABANDONED,
    },
    CheckoutStatus.TOKEN_LOADING: {
        CheckoutStatus.READY,
        CheckoutStatus.FAILED,
        CheckoutStatus.ABANDONED,
    },
    CheckoutStatus.READY: {
        CheckoutStatus.SUBMITTING,
        CheckoutStatus.TOKEN_LOADING,  # reload an expired token
        CheckoutStatus.ABANDONED,
    },
    CheckoutStatus.SUBMITTING: {
        CheckoutStatus.SUCCESS,
        CheckoutStatus.FAILED,
        CheckoutStatus.ABANDONED,
    },
    CheckoutStatus.FAILED: {
        CheckoutStatus.TOKEN_LOADING,  # retry token fetch
        CheckoutStatus.READY,  # retry submission with a fresh nonce
        CheckoutStatus.ABANDONED,
    },
    CheckoutStatus.SUCCESS: set(),  # Terminal state
    CheckoutStatus.BLOCKED: set(),  # Terminal state
    CheckoutStatus.ABANDONED: set(),  # Terminal state
}


# ============================================================================
# Order State Machine
# ============================================================================


class OrderStatus(str, Enum):
    """Order fulfillment states.

    Values match the labels shown in the admin back-office.

    State diagram:
        NOT_PROCESSED ──────────────────────────────► CANCELLED
          │         │                                    ▲
          │ process │ ship                               │
          ▼         │                                    │
        PROCESSING ─┼────────────────────────────────►───┤
          │         │                                    │
          │ ship    │                                    │
          ▼         ▼                                    │
        SHIPPED ─────────────────────────────────────►───┘
          │
          │ deliver
          ▼
        DELIVERED
    """

    NOT_PROCESSED = "Not Processed"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ORDER_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return list(_ORDER_TRANSITIONS.get(self, set()))

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state.

        Returns:
            True if no further transitions are possible.
        """
        return len(_ORDER_TRANSITIONS.get(self, set())) == 0


# Order state transitions
_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.NOT_PROCESSED: {
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),  # Terminal state
    OrderStatus.CANCELLED: set(),  # Terminal state
}


# ============================================================================
# State Machine Helpers
# ============================================================================


def validate_checkout_transition(
    session_id: str,
    current_status: CheckoutStatus,
    target_status: CheckoutStatus,
) -> None:
    """Validate and raise if checkout state transition is invalid.

    Args:
        session_id: Checkout session identifier for error message.
        current_status: Current checkout status.
        target_status: Target checkout status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="CheckoutSession",
            entity_id=session_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def validate_order_transition(
    order_id: str,
    current_status: OrderStatus,
    target_status: OrderStatus,
) -> None:
    """Validate and raise if order state transition is invalid.

    Args:
        order_id: Order identifier for error message.
        current_status: Current order status.
        target_status: Target order status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
