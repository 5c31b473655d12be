"""Tests for the checkout orchestrator."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from storefront.application.cart_service import CartStore
from storefront.application.checkout_service import (
    CheckoutOrchestrator,
    CheckoutSessionRepository,
)
from storefront.application.order_service import OrderRecordService
from storefront.application.payment_service import (
    PaymentService,
    PaymentTokenProvider,
    SubmittedNonceCapture,
)
from storefront.domain import CheckoutStatus
from storefront.domain.actors import AuthenticatedUser
from storefront.domain.base import utc_now
from storefront.domain.entities import (
    CART_PATH,
    LOGIN_PATH,
    ORDERS_PATH,
    PROFILE_PATH,
    CheckoutSession,
)
from storefront.domain.value_objects import Money, PaymentToken
from storefront.infrastructure.cart_storage import InMemoryCartStorage
from storefront.infrastructure.catalog import ProductCatalog
from storefront.infrastructure.order_repository import InMemoryOrderRepository
from storefront.infrastructure.payment_gateway import DECLINED_CARD, SandboxPaymentGateway


class FailingOnceRepository(InMemoryOrderRepository):
    """Order repository whose first save fails."""

    def __init__(self) -> None:
        super().__init__()
        self.failures_left = 1

    async def save(self, order) -> None:
        if self.failures_left:
            self.failures_left -= 1
            raise RuntimeError("database unavailable")
        await super().save(order)


class FlakyDeleteStorage(InMemoryCartStorage):
    """Cart storage whose first delete fails."""

    def __init__(self) -> None:
        super().__init__()
        self.failures_left = 1

    async def delete(self, cart_key: str) -> None:
        if self.failures_left:
            self.failures_left -= 1
            raise RuntimeError("cart db down")
        await super().delete(cart_key)


@pytest.fixture
def orchestrator(
    session_repository: CheckoutSessionRepository,
    cart_store: CartStore,
    gateway: SandboxPaymentGateway,
    catalog: ProductCatalog,
    order_repository: InMemoryOrderRepository,
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        session_repo=session_repository,
        cart_store=cart_store,
        token_provider=PaymentTokenProvider(gateway, timeout_seconds=1, ttl_seconds=60),
        payment_service=PaymentService(
            gateway=gateway,
            catalog=catalog,
            order_service=OrderRecordService(repository=order_repository),
        ),
    )


async def _nonce(gateway: SandboxPaymentGateway, card: str = "4111111111111111"):
    return SubmittedNonceCapture(await gateway.issue_nonce(card))


class TestStart:
    """Tests for checkout entry gating and token loading."""

    @pytest.mark.asyncio
    async def test_anonymous_is_sent_to_login(
        self, orchestrator: CheckoutOrchestrator, cart_store: CartStore, guest
    ) -> None:
        """Guests are redirected to login with the cart as return path."""
        await cart_store.add(guest.cart_key, "laptop")

        result = await orchestrator.start(guest)

        assert result.blocked
        assert result.error == "Please Login to checkout"
        assert result.session.redirect_to == LOGIN_PATH
        assert result.session.return_to == CART_PATH
        assert len(await cart_store.get_all(guest.cart_key)) == 1

    @pytest.mark.asyncio
    async def test_empty_cart_is_sent_back(
        self, orchestrator: CheckoutOrchestrator, gateway, buyer
    ) -> None:
        """An empty cart blocks checkout without asking the gateway."""
        result = await orchestrator.start(buyer)

        assert result.blocked
        assert result.error_code == "EMPTY_CART"
        assert result.session.redirect_to == CART_PATH
        assert gateway.client_tokens_issued == 0

    @pytest.mark.asyncio
    async def test_missing_address_goes_to_profile(
        self, orchestrator: CheckoutOrchestrator, cart_store, buyer_without_address
    ) -> None:
        """Buyers without an address must update their profile."""
        await cart_store.add(buyer_without_address.cart_key, "mouse")

        result = await orchestrator.start(buyer_without_address)

        assert result.blocked
        assert result.error_code == "MISSING_ADDRESS"
        assert result.session.redirect_to == PROFILE_PATH

    @pytest.mark.asyncio
    async def test_start_loads_token(
        self, orchestrator: CheckoutOrchestrator, cart_store, buyer
    ) -> None:
        """A ready buyer gets a session with a client token."""
        await cart_store.add(buyer.cart_key, "laptop")

        result = await orchestrator.start(buyer)

        assert result.success
        assert result.session.status == CheckoutStatus.READY
        assert result.session.client_token is not None
        assert result.session.can_submit

    @pytest.mark.asyncio
    async def test_token_failure_then_retry(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, buyer
    ) -> None:
        """A failed token fetch disables payment until a retry succeeds."""
        await cart_store.add(buyer.cart_key, "laptop")
        gateway.token_failure = True

        result = await orchestrator.start(buyer)

        assert not result.success
        assert result.error == "Error fetching payment token"
        assert result.session.status == CheckoutStatus.FAILED
        assert not result.session.can_submit

        gateway.token_failure = False
        retry = await orchestrator.retry_token(str(result.session.id), buyer)

        assert retry.success
        assert retry.session.status == CheckoutStatus.READY

    @pytest.mark.asyncio
    async def test_retry_token_requires_failed_session(
        self, orchestrator: CheckoutOrchestrator, cart_store, buyer
    ) -> None:
        """Retrying a ready session is refused."""
        await cart_store.add(buyer.cart_key, "laptop")
        started = await orchestrator.start(buyer)

        retry = await orchestrator.retry_token(str(started.session.id), buyer)

        assert retry.error_code == "INVALID_STATE"
        assert retry.session.status == CheckoutStatus.READY

    @pytest.mark.asyncio
    async def test_unexpected_token_error_can_be_retried(
        self, session_repository, cart_store, buyer
    ) -> None:
        """Any token failure leaves the session retryable."""
        provider = AsyncMock()
        provider.fetch_client_token.side_effect = [
            ValueError("malformed gateway response"),
            PaymentToken.with_ttl("client-token", 60),
        ]
        orchestrator = CheckoutOrchestrator(
            session_repo=session_repository,
            cart_store=cart_store,
            token_provider=provider,
            payment_service=AsyncMock(),
        )
        await cart_store.add(buyer.cart_key, "laptop")

        result = await orchestrator.start(buyer)

        assert result.error_code == "GATEWAY_UNAVAILABLE"
        assert result.session.status == CheckoutStatus.FAILED

        retry = await orchestrator.retry_token(str(result.session.id), buyer)
        assert retry.session.status == CheckoutStatus.READY

    @pytest.mark.asyncio
    async def test_expired_token_is_reloaded_before_payment(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, buyer
    ) -> None:
        """An expired client token blocks payment until it is reloaded."""
        await cart_store.add(buyer.cart_key, "mouse")
        started = await orchestrator.start(buyer)
        session = started.session
        session.client_token = PaymentToken(
            value="old-token", expires_at=utc_now() - timedelta(seconds=1)
        )

        refused = await orchestrator.submit(str(session.id), buyer, await _nonce(gateway))

        assert refused.error_code == "TOKEN_EXPIRED"
        assert session.status == CheckoutStatus.READY
        assert gateway.transactions == {}

        reloaded = await orchestrator.retry_token(str(session.id), buyer)
        assert reloaded.success
        assert session.can_submit

        paid = await orchestrator.submit(str(session.id), buyer, await _nonce(gateway))
        assert paid.success

    @pytest.mark.asyncio
    async def test_sessions_are_private_to_their_cart(
        self, orchestrator: CheckoutOrchestrator, cart_store, buyer, admin, guest
    ) -> None:
        """Other actors cannot see a session."""
        await cart_store.add(buyer.cart_key, "laptop")
        started = await orchestrator.start(buyer)
        session_id = str(started.session.id)

        assert (await orchestrator.retry_token(session_id, admin)).error_code == (
            "CHECKOUT_NOT_FOUND"
        )
        assert (await orchestrator.abandon(session_id, guest)).error_code == (
            "CHECKOUT_NOT_FOUND"
        )


class TestSubmit:
    """Tests for payment submission."""

    @pytest.mark.asyncio
    async def test_successful_checkout(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, order_repository, buyer
    ) -> None:
        """Payment records the order and clears the cart."""
        await cart_store.add(buyer.cart_key, "laptop")
        await cart_store.add(buyer.cart_key, "mouse")
        started = await orchestrator.start(buyer)

        result = await orchestrator.submit(str(started.session.id), buyer, await _nonce(gateway))

        assert result.success
        assert result.order.total == Money(102400)
        assert result.session.status == CheckoutStatus.SUCCESS
        assert result.session.redirect_to == ORDERS_PATH
        assert await cart_store.get_all(buyer.cart_key) == []
        assert len(await order_repository.list_by_buyer(buyer.user_id)) == 1

    @pytest.mark.asyncio
    async def test_order_total_ignores_later_price_change(
        self,
        orchestrator: CheckoutOrchestrator,
        cart_store,
        gateway,
        catalog: ProductCatalog,
        order_repository,
        buyer,
    ) -> None:
        """A $999 order stays $999 after the catalog moves to $1099."""
        await cart_store.add(buyer.cart_key, "laptop")
        started = await orchestrator.start(buyer)
        result = await orchestrator.submit(str(started.session.id), buyer, await _nonce(gateway))

        catalog.update_price("laptop", Money(109900))

        stored = await order_repository.get(str(result.order.id))
        assert stored.total == Money(99900)
        assert str(stored.total) == "$999.00"

    @pytest.mark.asyncio
    async def test_price_change_before_payment(
        self,
        orchestrator: CheckoutOrchestrator,
        cart_store,
        gateway,
        catalog: ProductCatalog,
        buyer,
    ) -> None:
        """The order keeps the price at payment time, not a later one."""
        await cart_store.add(buyer.cart_key, "laptop")
        started = await orchestrator.start(buyer)
        catalog.update_price("laptop", Money(109900))

        result = await orchestrator.submit(str(started.session.id), buyer, await _nonce(gateway))
        catalog.update_price("laptop", Money(79900))

        assert result.order.lines[0].price == Money(109900)
        assert gateway.transactions[result.transaction_id].amount == Money(109900)

    @pytest.mark.asyncio
    async def test_removed_item_lowers_charge(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, buyer
    ) -> None:
        """Removing an item during checkout lowers the amount charged."""
        await cart_store.add(buyer.cart_key, "laptop")
        await cart_store.add(buyer.cart_key, "mouse")
        started = await orchestrator.start(buyer)
        await cart_store.remove(buyer.cart_key, "laptop")

        result = await orchestrator.submit(str(started.session.id), buyer, await _nonce(gateway))

        assert result.order.total == Money(2500)
        assert [line.product_id for line in result.order.lines] == ["mouse"]

    @pytest.mark.asyncio
    async def test_double_click_creates_one_order(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, order_repository, buyer
    ) -> None:
        """Concurrent submissions of one session charge once."""
        await cart_store.add(buyer.cart_key, "laptop")
        started = await orchestrator.start(buyer)
        session_id = str(started.session.id)
        gateway.sale_delay = 0.01

        first, second = await asyncio.gather(
            orchestrator.submit(session_id, buyer, await _nonce(gateway)),
            orchestrator.submit(session_id, buyer, await _nonce(gateway)),
        )

        assert first.success and first.order is not None
        assert second.duplicate
        assert second.order is None
        assert len(gateway.transactions) == 1
        assert len(await order_repository.list_all()) == 1

    @pytest.mark.asyncio
    async def test_submit_after_success_is_refused(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, buyer
    ) -> None:
        """A finished session accepts no more payments."""
        await cart_store.add(buyer.cart_key, "laptop")
        started = await orchestrator.start(buyer)
        session_id = str(started.session.id)
        await orchestrator.submit(session_id, buyer, await _nonce(gateway))

        again = await orchestrator.submit(session_id, buyer, await _nonce(gateway))

        assert again.error_code == "INVALID_STATE"
        assert len(gateway.transactions) == 1

    @pytest.mark.asyncio
    async def test_declined_card_allows_retry(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, buyer
    ) -> None:
        """A declined card keeps the cart and reopens the session."""
        await cart_store.add(buyer.cart_key, "mouse")
        started = await orchestrator.start(buyer)
        session_id = str(started.session.id)

        failed = await orchestrator.submit(
            session_id, buyer, await _nonce(gateway, DECLINED_CARD)
        )

        assert failed.error_code == "GATEWAY_ERROR"
        assert failed.session.status == CheckoutStatus.READY
        assert len(await cart_store.get_all(buyer.cart_key)) == 1

        retried = await orchestrator.submit(session_id, buyer, await _nonce(gateway))
        assert retried.success

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_cart_and_needs_new_nonce(
        self,
        session_repository,
        cart_store,
        gateway: SandboxPaymentGateway,
        catalog,
        buyer: AuthenticatedUser,
    ) -> None:
        """A failed order write leaves the cart; the retry needs a fresh nonce."""
        repository = FailingOnceRepository()
        orchestrator = CheckoutOrchestrator(
            session_repo=session_repository,
            cart_store=cart_store,
            token_provider=PaymentTokenProvider(gateway, timeout_seconds=1),
            payment_service=PaymentService(
                gateway=gateway,
                catalog=catalog,
                order_service=OrderRecordService(repository=repository),
            ),
        )
        await cart_store.add(buyer.cart_key, "laptop")
        started = await orchestrator.start(buyer)
        session_id = str(started.session.id)
        capture = await _nonce(gateway)

        failed = await orchestrator.submit(session_id, buyer, capture)

        assert failed.error_code == "PERSISTENCE_ERROR"
        assert failed.transaction_id is not None
        assert gateway.transactions[failed.transaction_id].status == "voided"
        assert len(await cart_store.get_all(buyer.cart_key)) == 1

        stale = await orchestrator.submit(session_id, buyer, capture)
        assert stale.error_code == "STALE_NONCE"

        retried = await orchestrator.submit(session_id, buyer, await _nonce(gateway))
        assert retried.success
        assert len(await repository.list_all()) == 1
        assert await cart_store.get_all(buyer.cart_key) == []

    @pytest.mark.asyncio
    async def test_cart_clear_failure_still_completes_checkout(
        self,
        session_repository,
        gateway: SandboxPaymentGateway,
        catalog,
        order_repository,
        buyer: AuthenticatedUser,
    ) -> None:
        """A recorded order finishes the session even if the cart cannot be deleted."""
        storage = FlakyDeleteStorage()
        cart_store = CartStore(storage=storage, catalog=catalog)
        orchestrator = CheckoutOrchestrator(
            session_repo=session_repository,
            cart_store=cart_store,
            token_provider=PaymentTokenProvider(gateway, timeout_seconds=1),
            payment_service=PaymentService(
                gateway=gateway,
                catalog=catalog,
                order_service=OrderRecordService(repository=order_repository),
            ),
        )
        await cart_store.add(buyer.cart_key, "laptop")
        started = await orchestrator.start(buyer)
        session_id = str(started.session.id)

        result = await orchestrator.submit(session_id, buyer, await _nonce(gateway))

        assert result.success
        assert result.session.status == CheckoutStatus.SUCCESS
        assert len(await order_repository.list_all()) == 1

        assert await cart_store.get_all(buyer.cart_key) == []
        assert await storage.load(buyer.cart_key) is None

        again = await orchestrator.submit(session_id, buyer, await _nonce(gateway))
        assert not again.duplicate
        assert again.error_code == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_missing_nonce(
        self, orchestrator: CheckoutOrchestrator, cart_store, buyer
    ) -> None:
        """Submitting without a nonce fails and allows retry."""
        await cart_store.add(buyer.cart_key, "mouse")
        started = await orchestrator.start(buyer)

        result = await orchestrator.submit(
            str(started.session.id), buyer, SubmittedNonceCapture(None)
        )

        assert result.error_code == "CARD_VALIDATION_ERROR"
        assert result.session.can_submit

    @pytest.mark.asyncio
    async def test_cart_emptied_after_start(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, buyer
    ) -> None:
        """Submitting an emptied cart fails without charging."""
        await cart_store.add(buyer.cart_key, "mouse")
        started = await orchestrator.start(buyer)
        await cart_store.clear(buyer.cart_key)

        result = await orchestrator.submit(str(started.session.id), buyer, await _nonce(gateway))

        assert result.error_code == "EMPTY_CART"
        assert gateway.transactions == {}

    @pytest.mark.asyncio
    async def test_unauthenticated_flow_keeps_cart(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, guest
    ) -> None:
        """A guest signs in after the login detour and checks out the same items."""
        await cart_store.add(guest.cart_key, "laptop")
        blocked = await orchestrator.start(guest)
        assert blocked.session.redirect_to == LOGIN_PATH

        user = AuthenticatedUser(
            user_id="user-9", name="Late Login", address="9 Side St", session_id="browser-1"
        )
        await cart_store.adopt_guest_cart(user.guest_cart_key, user.cart_key)
        started = await orchestrator.start(user)
        result = await orchestrator.submit(str(started.session.id), user, await _nonce(gateway))

        assert result.success
        assert [line.product_id for line in result.order.lines] == ["laptop"]


class TestAbandon:
    """Tests for leaving the checkout page."""

    @pytest.mark.asyncio
    async def test_abandon_ready_session(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, buyer
    ) -> None:
        """Abandoned sessions accept no payment."""
        await cart_store.add(buyer.cart_key, "mouse")
        started = await orchestrator.start(buyer)
        session_id = str(started.session.id)

        result = await orchestrator.abandon(session_id, buyer)
        assert result.session.status == CheckoutStatus.ABANDONED

        submitted = await orchestrator.submit(session_id, buyer, await _nonce(gateway))
        assert submitted.error_code == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_abandon_during_submission_discards_result(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, order_repository, buyer
    ) -> None:
        """A sale finishing after abandonment does not revive the session."""
        await cart_store.add(buyer.cart_key, "mouse")
        started = await orchestrator.start(buyer)
        session_id = str(started.session.id)
        gateway.sale_delay = 0.05
        capture = await _nonce(gateway)

        task = asyncio.create_task(orchestrator.submit(session_id, buyer, capture))
        await asyncio.sleep(0.01)
        await orchestrator.abandon(session_id, buyer)
        result = await task

        assert result.session.status == CheckoutStatus.ABANDONED
        assert result.session.order_id is None
        assert len(await order_repository.list_all()) == 1
        assert await cart_store.get_all(buyer.cart_key) == []

    @pytest.mark.asyncio
    async def test_abandon_during_token_load(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, session_repository, buyer
    ) -> None:
        """A token arriving after abandonment is dropped."""
        await cart_store.add(buyer.cart_key, "mouse")
        gateway.token_delay = 0.05

        task = asyncio.create_task(orchestrator.start(buyer))
        await asyncio.sleep(0.01)
        [session] = session_repository.list_for_cart(buyer.cart_key)
        await orchestrator.abandon(str(session.id), buyer)
        result = await task

        assert result.session.status == CheckoutStatus.ABANDONED
        assert result.session.client_token is None

    @pytest.mark.asyncio
    async def test_abandon_finished_session_is_noop(
        self, orchestrator: CheckoutOrchestrator, cart_store, gateway, buyer
    ) -> None:
        """Leaving after success keeps SUCCESS."""
        await cart_store.add(buyer.cart_key, "mouse")
        started = await orchestrator.start(buyer)
        session_id = str(started.session.id)
        await orchestrator.submit(session_id, buyer, await _nonce(gateway))

        result = await orchestrator.abandon(session_id, buyer)

        assert result.session.status == CheckoutStatus.SUCCESS


class TestSessionRepository:
    """Tests for checkout session retention."""

    def test_idle_sessions_age_out(self) -> None:
        """Sessions untouched past the TTL are dropped on the next save."""
        repository = CheckoutSessionRepository(ttl_seconds=60)
        old = CheckoutSession.create(cart_key="user:u1", buyer_id="u1")
        old.updated_at = utc_now() - timedelta(seconds=61)
        repository.save(old)

        repository.save(CheckoutSession.create(cart_key="user:u2", buyer_id="u2"))

        assert repository.get(str(old.id)) is None
        assert len(repository) == 1

    def test_in_flight_sessions_are_kept(self) -> None:
        """A session waiting on the gateway is never dropped."""
        repository = CheckoutSessionRepository(ttl_seconds=60)
        pending = CheckoutSession.create(cart_key="user:u1", buyer_id="u1")
        pending.begin_token_load()
        pending.updated_at = utc_now() - timedelta(hours=2)
        repository.save(pending)

        assert repository.prune() == 0
        assert repository.get(str(pending.id)) is pending
