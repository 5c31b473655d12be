"""Checkout application service.

Orchestrates one checkout page visit:
- Gating entry on sign-in, a non-empty cart and a shipping address
- Loading the gateway client token
- Submitting payment exactly once per click, with retry after failure
- Clearing the cart only after the order is recorded
- Discarding late results once the buyer has left the page
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from storefront.application.cart_service import CartStore, get_cart_store
from storefront.application.payment_service import (
    PaymentCapture,
    PaymentService,
    PaymentTokenProvider,
    get_payment_service,
    get_token_provider,
)
from storefront.domain.actors import Actor, AuthenticatedUser
from storefront.domain.base import utc_now
from storefront.domain.entities import (
    CART_PATH,
    LOGIN_PATH,
    PROFILE_PATH,
    CheckoutSession,
    Order,
)
from storefront.domain.exceptions import (
    CartError,
    CheckoutSessionNotFoundError,
    DomainError,
    EmptyCartError,
    GatewayUnavailableError,
    InvalidStateTransitionError,
    MissingAddressError,
    PaymentTokenExpiredError,
    StaleNonceError,
    UnauthenticatedError,
)
from storefront.domain.state_machines import CheckoutStatus
from storefront.domain.value_objects import sum_money
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


# ============================================================================
# In-Memory Session Repository
# ============================================================================


class CheckoutSessionRepository:
    """In-memory repository for checkout sessions.

    Sessions are held by reference so the orchestrator's status check
    and update happen on the single shared object. Sessions untouched for
    longer than the TTL are dropped on the next save unless a gateway
    call is still pending for them.
    """

    def __init__(self, ttl_seconds: int | None = None) -> None:
        self._sessions: dict[str, CheckoutSession] = {}
        self.ttl_seconds = ttl_seconds or settings.checkout_session_ttl_seconds

    def __len__(self) -> int:
        return len(self._sessions)

    def save(self, session: CheckoutSession) -> None:
        """Save a session."""
        self.prune()
        self._sessions[str(session.id)] = session

    def get(self, session_id: str) -> CheckoutSession | None:
        """Get session by ID."""
        return self._sessions.get(session_id)

    def list_for_cart(self, cart_key: str) -> list[CheckoutSession]:
        return [s for s in self._sessions.values() if s.cart_key == cart_key]

    def prune(self, now: datetime | None = None) -> int:
        """Drop idle sessions older than the TTL.

        Returns:
            Number of sessions removed.
        """
        cutoff = (now or utc_now()) - timedelta(seconds=self.ttl_seconds)
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if session.updated_at < cutoff and not session.status.is_in_flight()
        ]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            logger.debug("Expired checkout sessions pruned", count=len(expired))
        return len(expired)


# Global repository instance
_session_repo: CheckoutSessionRepository | None = None


def get_session_repository() -> CheckoutSessionRepository:
    """Get checkout session repository singleton."""
    global _session_repo
    if _session_repo is None:
        _session_repo = CheckoutSessionRepository()
    return _session_repo


def reset_session_repository() -> CheckoutSessionRepository:
    """Reset checkout session repository (for testing)."""
    global _session_repo
    _session_repo = CheckoutSessionRepository()
    return _session_repo


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class CheckoutResult:
    """Result of a checkout operation.

    ``duplicate`` is set when a submission arrived while another one was
    still in flight; it is reported, not treated as an error.
    """

    session: CheckoutSession | None = None
    order: Order | None = None
    success: bool = True
    error: str | None = None
    error_code: str | None = None
    duplicate: bool = False
    transaction_id: str | None = None

    @property
    def blocked(self) -> bool:
        return self.session is not None and self.session.status == CheckoutStatus.BLOCKED


# ============================================================================
# Checkout Orchestrator
# ============================================================================


class CheckoutOrchestrator:
    """Drives the checkout session state machine.

    Flow:
    1. start: gate entry, then load a client token
    2. retry_token: reload the token after a gateway failure
    3. submit: obtain a nonce, place the order, clear the cart
    4. abandon: leave the page; pending results are dropped
    """

    def __init__(
        self,
        session_repo: CheckoutSessionRepository | None = None,
        cart_store: CartStore | None = None,
        token_provider: PaymentTokenProvider | None = None,
        payment_service: PaymentService | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            session_repo: Checkout session repository.
            cart_store: Cart store.
            token_provider: Client token provider.
            payment_service: Service that charges and records orders.
            request_id: Request ID for correlation.
        """
        self.session_repo = session_repo or get_session_repository()
        self.cart_store = cart_store or get_cart_store()
        self.token_provider = token_provider or get_token_provider()
        self.payment_service = payment_service or get_payment_service(request_id)
        self.request_id = request_id

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def get_session(self, session_id: str, actor: Actor) -> CheckoutSession:
        """Get a session owned by the actor's cart.

        Raises:
            CheckoutSessionNotFoundError: If unknown or owned by another cart.
        """
        session = self.session_repo.get(session_id)
        if session is None or actor.cart_key is None or session.cart_key != actor.cart_key:
            raise CheckoutSessionNotFoundError(session_id)
        return session

    def _block(self, session: CheckoutSession, error: DomainError, redirect_to: str,
               return_to: str | None = None) -> CheckoutResult:
        session.block(error.error_code, error.message, redirect_to, return_to)
        logger.info(
            "Checkout blocked",
            session_id=str(session.id),
            reason=error.error_code,
            redirect_to=redirect_to,
            request_id=self.request_id,
        )
        return CheckoutResult(
            session=session,
            success=False,
            error=error.message,
            error_code=error.error_code,
        )

    def _token_failed(
        self,
        session: CheckoutSession,
        epoch: int,
        error: GatewayUnavailableError,
    ) -> CheckoutResult:
        result = CheckoutResult(
            session=session,
            success=False,
            error=error.message,
            error_code=error.error_code,
        )
        if not session.is_current(epoch):
            logger.info("Discarding late token failure", session_id=str(session.id))
            return result
        session.token_failed(error.error_code, error.message)
        logger.warning(
            "Client token unavailable",
            session_id=str(session.id),
            request_id=self.request_id,
        )
        return result

    async def _load_token(self, session: CheckoutSession) -> CheckoutResult:
        epoch = session.begin_token_load()
        try:
            token = await self.token_provider.fetch_client_token()
        except GatewayUnavailableError as e:
            return self._token_failed(session, epoch, e)
        except Exception as e:
            logger.exception(
                "Unexpected client token failure",
                session_id=str(session.id),
                error=str(e),
                request_id=self.request_id,
            )
            return self._token_failed(session, epoch, GatewayUnavailableError())

        if not session.is_current(epoch):
            logger.info("Discarding late client token", session_id=str(session.id))
            return CheckoutResult(session=session)

        session.token_loaded(token)
        return CheckoutResult(session=session)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def start(self, actor: Actor) -> CheckoutResult:
        """Open a checkout session for the actor's cart.

        Anonymous actors are sent to the login page with a return path to
        the cart; empty carts go back to the cart; buyers without an
        address go to their profile. Otherwise the client token is loaded.

        Args:
            actor: Current actor.

        Returns:
            CheckoutResult with the session (READY, FAILED or BLOCKED).
        """
        buyer_id = actor.user_id if isinstance(actor, AuthenticatedUser) else None
        session = CheckoutSession.create(cart_key=actor.cart_key, buyer_id=buyer_id)
        self.session_repo.save(session)

        if not isinstance(actor, AuthenticatedUser):
            return self._block(session, UnauthenticatedError(), LOGIN_PATH, return_to=CART_PATH)

        items = await self.cart_store.get_all(actor.cart_key)
        if not items:
            return self._block(session, EmptyCartError(actor.cart_key), CART_PATH)

        if not actor.has_address:
            return self._block(session, MissingAddressError(actor.user_id), PROFILE_PATH)

        logger.info(
            "Checkout started",
            session_id=str(session.id),
            buyer_id=actor.user_id,
            item_count=len(items),
            request_id=self.request_id,
        )
        return await self._load_token(session)

    async def retry_token(self, session_id: str, actor: Actor) -> CheckoutResult:
        """Reload the client token after a failed fetch or once it expired.

        Returns:
            CheckoutResult with the session, or INVALID_STATE when the
            session is neither FAILED nor READY with an expired token.
        """
        try:
            session = self.get_session(session_id, actor)
        except CheckoutSessionNotFoundError as e:
            return CheckoutResult(success=False, error=e.message, error_code=e.error_code)
        try:
            if session.status == CheckoutStatus.READY and not session.token_expired:
                raise InvalidStateTransitionError(
                    entity_type="CheckoutSession",
                    entity_id=session_id,
                    current_state=session.status.value,
                    target_state=CheckoutStatus.TOKEN_LOADING.value,
                )
            return await self._load_token(session)
        except InvalidStateTransitionError as e:
            return CheckoutResult(
                session=session,
                success=False,
                error=e.message,
                error_code=e.error_code,
            )

    async def submit(
        self,
        session_id: str,
        actor: Actor,
        capture: PaymentCapture,
    ) -> CheckoutResult:
        """Submit payment for the session's cart.

        Only a READY session accepts a submission. A submission arriving
        while another is in flight is reported as a duplicate and does not
        reach the gateway. On failure the cart is untouched and the session
        returns to READY; the next attempt needs a new nonce.

        Args:
            session_id: Checkout session identifier.
            actor: Current actor; must own the session.
            capture: Source of the payment nonce.

        Returns:
            CheckoutResult with the order on success.
        """
        try:
            session = self.get_session(session_id, actor)
        except CheckoutSessionNotFoundError as e:
            return CheckoutResult(success=False, error=e.message, error_code=e.error_code)

        if session.status == CheckoutStatus.SUBMITTING:
            logger.info(
                "Duplicate payment submission ignored",
                session_id=session_id,
                request_id=self.request_id,
            )
            return CheckoutResult(session=session, duplicate=True)

        if session.status == CheckoutStatus.READY and session.token_expired:
            expired = PaymentTokenExpiredError()
            logger.info("Payment token expired", session_id=session_id, request_id=self.request_id)
            return CheckoutResult(
                session=session,
                success=False,
                error=expired.message,
                error_code=expired.error_code,
            )

        if not session.can_submit or not isinstance(actor, AuthenticatedUser):
            return CheckoutResult(
                session=session,
                success=False,
                error=f"Checkout is not ready for payment (current: {session.status.value})",
                error_code="INVALID_STATE",
            )

        # Status flips to SUBMITTING before the first await
        epoch = session.begin_submission()

        try:
            nonce = await capture.request_nonce()
            if session.has_submitted(nonce):
                raise StaleNonceError()
            session.record_nonce(nonce)

            items = await self.cart_store.get_all(session.cart_key)
            if not items:
                raise EmptyCartError(session.cart_key)
            if not sum_money([item.price for item in items]).is_positive():
                raise CartError("Cart total must be positive")

            order = await self.payment_service.place_order(actor, items, nonce)
        except DomainError as e:
            return self._submission_failed(session, epoch, e.error_code, e.message,
                                           getattr(e, "transaction_id", None))
        except Exception as e:
            logger.exception(
                "Unexpected checkout failure",
                session_id=session_id,
                error=str(e),
                request_id=self.request_id,
            )
            return self._submission_failed(session, epoch, "CHECKOUT_FAILED", str(e), None)

        # The order is durable from here on, so the cart goes even if the
        # buyer already left the page
        try:
            await self.cart_store.clear(session.cart_key)
        except Exception as e:
            logger.exception(
                "Failed to clear cart after order was recorded",
                session_id=session_id,
                order_id=str(order.id),
                error=str(e),
                request_id=self.request_id,
            )
            self.cart_store.defer_clear(session.cart_key)

        if not session.is_current(epoch):
            logger.info(
                "Order completed after checkout was abandoned",
                session_id=session_id,
                order_id=str(order.id),
            )
            return CheckoutResult(session=session, order=order,
                                  transaction_id=order.transaction_id)

        session.succeed(str(order.id), order.transaction_id)
        logger.info(
            "Checkout completed",
            session_id=session_id,
            order_id=str(order.id),
            transaction_id=order.transaction_id,
            total_cents=order.total.amount_cents,
            request_id=self.request_id,
        )
        return CheckoutResult(session=session, order=order, transaction_id=order.transaction_id)

    def _submission_failed(
        self,
        session: CheckoutSession,
        epoch: int,
        error_code: str,
        message: str,
        transaction_id: str | None,
    ) -> CheckoutResult:
        if session.is_current(epoch):
            session.submission_failed(error_code, message)
        else:
            logger.info("Discarding late submission failure", session_id=str(session.id))

        logger.warning(
            "Checkout payment failed",
            session_id=str(session.id),
            error_code=error_code,
            error=message,
            transaction_id=transaction_id,
            request_id=self.request_id,
        )
        return CheckoutResult(
            session=session,
            success=False,
            error=message,
            error_code=error_code,
            transaction_id=transaction_id,
        )

    async def abandon(self, session_id: str, actor: Actor) -> CheckoutResult:
        """Mark the session abandoned; a finished session is left as is."""
        try:
            session = self.get_session(session_id, actor)
        except CheckoutSessionNotFoundError as e:
            return CheckoutResult(success=False, error=e.message, error_code=e.error_code)

        if session.status.is_terminal():
            return CheckoutResult(session=session)

        session.abandon()
        logger.info("Checkout abandoned", session_id=session_id, request_id=self.request_id)
        return CheckoutResult(session=session)


# ============================================================================
# Service Factory
# ============================================================================


def get_checkout_orchestrator(request_id: str | None = None) -> CheckoutOrchestrator:
    """Get checkout orchestrator instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        CheckoutOrchestrator instance.
    """
    return CheckoutOrchestrator(request_id=request_id)
