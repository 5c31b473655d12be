"""Tests for token provider, nonce capture and order placement."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from storefront.application.order_service import OrderRecordService
from storefront.application.payment_service import (
    HostedFieldsCapture,
    PaymentService,
    PaymentTokenProvider,
    SubmittedNonceCapture,
)
from storefront.domain.exceptions import (
    CardValidationError,
    EmptyOrderError,
    GatewayError,
    GatewayUnavailableError,
    OrderError,
    OutOfStockError,
    PersistenceError,
    ProductNotFoundError,
)
from storefront.domain.value_objects import Money, PaymentNonce, PaymentResult, ProductRef
from storefront.infrastructure.catalog import ProductCatalog
from storefront.infrastructure.order_repository import InMemoryOrderRepository
from storefront.infrastructure.payment_gateway import (
    DECLINED_CARD,
    HostedFields,
    SandboxPaymentGateway,
)


@pytest.fixture
def payment_service(
    gateway: SandboxPaymentGateway,
    catalog: ProductCatalog,
    order_repository: InMemoryOrderRepository,
) -> PaymentService:
    return PaymentService(
        gateway=gateway,
        catalog=catalog,
        order_service=OrderRecordService(repository=order_repository),
    )


class TestPaymentTokenProvider:
    """Tests for client token fetching."""

    @pytest.mark.asyncio
    async def test_fetch_token(self, gateway: SandboxPaymentGateway) -> None:
        """A token is returned with an expiry."""
        provider = PaymentTokenProvider(gateway, timeout_seconds=1, ttl_seconds=60)
        token = await provider.fetch_client_token()

        assert token.value.startswith("sandbox_client_token_")
        assert token.expires_at is not None
        assert gateway.client_tokens_issued == 1

    @pytest.mark.asyncio
    async def test_gateway_failure(self, gateway: SandboxPaymentGateway) -> None:
        """Gateway errors become GatewayUnavailableError."""
        gateway.token_failure = True
        provider = PaymentTokenProvider(gateway, timeout_seconds=1)

        with pytest.raises(GatewayUnavailableError) as exc_info:
            await provider.fetch_client_token()
        assert exc_info.value.message == "Error fetching payment token"

    @pytest.mark.asyncio
    async def test_timeout(self, gateway: SandboxPaymentGateway) -> None:
        """A slow gateway is abandoned after the timeout."""
        gateway.token_delay = 1.0
        provider = PaymentTokenProvider(gateway, timeout_seconds=0.01)

        with pytest.raises(GatewayUnavailableError):
            await provider.fetch_client_token()

    @pytest.mark.asyncio
    async def test_unexpected_gateway_error(self) -> None:
        """Errors outside the gateway contract still become GatewayUnavailableError."""
        gateway = AsyncMock()
        gateway.generate_client_token.side_effect = ValueError("not a token response")
        provider = PaymentTokenProvider(gateway, timeout_seconds=1)

        with pytest.raises(GatewayUnavailableError):
            await provider.fetch_client_token()


class TestPaymentCapture:
    """Tests for nonce capture."""

    @pytest.mark.asyncio
    async def test_hosted_fields_capture(self, gateway: SandboxPaymentGateway) -> None:
        """Valid hosted fields yield a nonce."""
        fields = HostedFields(number="4111 1111 1111 1111", expiration_date="12/2099", cvv="123")
        nonce = await HostedFieldsCapture(fields, gateway).request_nonce()
        assert nonce.value.startswith("sandbox-nonce-")

    @pytest.mark.asyncio
    async def test_hosted_fields_invalid_card(self, gateway: SandboxPaymentGateway) -> None:
        """Bad card input becomes a validation error."""
        fields = HostedFields(number="4111111111111112", expiration_date="12/2099", cvv="123")
        with pytest.raises(CardValidationError) as exc_info:
            await HostedFieldsCapture(fields, gateway).request_nonce()
        assert "invalid" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_submitted_nonce(self) -> None:
        """A browser-supplied nonce is passed through."""
        nonce = await SubmittedNonceCapture(" abc ").request_nonce()
        assert nonce == PaymentNonce("abc")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [None, "", "   "])
    async def test_missing_nonce(self, value) -> None:
        """A missing nonce is a validation error."""
        with pytest.raises(CardValidationError) as exc_info:
            await SubmittedNonceCapture(value).request_nonce()
        assert exc_info.value.message == "Payment method nonce is required"


class TestPlaceOrder:
    """Tests for PaymentService.place_order."""

    @pytest.mark.asyncio
    async def test_place_order(
        self,
        payment_service: PaymentService,
        gateway: SandboxPaymentGateway,
        catalog: ProductCatalog,
        buyer,
    ) -> None:
        """A valid nonce charges the total and records the order."""
        nonce = PaymentNonce(await gateway.issue_nonce())
        items = [catalog.get_ref("laptop"), catalog.get_ref("mouse")]

        order = await payment_service.place_order(buyer, items, nonce)

        assert order.total == Money(102400)
        assert order.payment.success
        assert gateway.transactions[order.transaction_id].amount == Money(102400)

    @pytest.mark.asyncio
    async def test_price_snapshot_uses_current_catalog_price(
        self,
        payment_service: PaymentService,
        gateway: SandboxPaymentGateway,
        catalog: ProductCatalog,
        buyer,
    ) -> None:
        """Orders charge and keep the price at placement time."""
        stale_ref = catalog.get_ref("laptop")
        catalog.update_price("laptop", Money(109900))
        nonce = PaymentNonce(await gateway.issue_nonce())

        order = await payment_service.place_order(buyer, [stale_ref], nonce)
        catalog.update_price("laptop", Money(89900))

        assert order.lines[0].price == Money(109900)
        assert order.total == Money(109900)

    @pytest.mark.asyncio
    async def test_missing_nonce(self, payment_service: PaymentService, catalog, buyer) -> None:
        """Orders need a nonce."""
        with pytest.raises(CardValidationError):
            await payment_service.place_order(buyer, [catalog.get_ref("mouse")], None)

    @pytest.mark.asyncio
    async def test_empty_items(self, payment_service: PaymentService, buyer) -> None:
        """Orders need items."""
        with pytest.raises(EmptyOrderError):
            await payment_service.place_order(buyer, [], PaymentNonce("n"))

    @pytest.mark.asyncio
    async def test_unknown_product(self, payment_service: PaymentService, buyer) -> None:
        """Items must still exist in the catalog."""
        ghost = ProductRef(product_id="ghost", name="Ghost", price=Money(100))
        with pytest.raises(ProductNotFoundError):
            await payment_service.place_order(buyer, [ghost], PaymentNonce("n"))

    @pytest.mark.asyncio
    async def test_out_of_stock(
        self, payment_service: PaymentService, gateway, catalog, buyer
    ) -> None:
        """Items without stock are refused before charging."""
        nonce = PaymentNonce(await gateway.issue_nonce())
        with pytest.raises(OutOfStockError):
            await payment_service.place_order(buyer, [catalog.get_ref("monitor")], nonce)
        assert gateway.transactions == {}

    @pytest.mark.asyncio
    async def test_duplicate_entries_need_enough_stock(
        self, payment_service: PaymentService, gateway, catalog, buyer
    ) -> None:
        """A product listed twice needs two units."""
        nonce = PaymentNonce(await gateway.issue_nonce())
        cable = catalog.get_ref("cable")
        with pytest.raises(OutOfStockError):
            await payment_service.place_order(buyer, [cable, cable], nonce)

    @pytest.mark.asyncio
    async def test_zero_total_rejected(
        self, payment_service: PaymentService, gateway, catalog, buyer
    ) -> None:
        """Free carts are not charged."""
        nonce = PaymentNonce(await gateway.issue_nonce())
        with pytest.raises(OrderError):
            await payment_service.place_order(buyer, [catalog.get_ref("sticker")], nonce)

    @pytest.mark.asyncio
    async def test_declined_card(
        self, payment_service: PaymentService, gateway, catalog, order_repository, buyer
    ) -> None:
        """Declined sales raise and record nothing."""
        nonce = PaymentNonce(await gateway.issue_nonce(DECLINED_CARD))

        with pytest.raises(GatewayError) as exc_info:
            await payment_service.place_order(buyer, [catalog.get_ref("mouse")], nonce)

        assert exc_info.value.message == "Processor Declined"
        assert await order_repository.list_all() == []

    @pytest.mark.asyncio
    async def test_reused_nonce(
        self, payment_service: PaymentService, gateway, catalog, buyer
    ) -> None:
        """A consumed nonce is rejected by the gateway."""
        nonce = PaymentNonce(await gateway.issue_nonce())
        await payment_service.place_order(buyer, [catalog.get_ref("mouse")], nonce)

        with pytest.raises(CardValidationError):
            await payment_service.place_order(buyer, [catalog.get_ref("mouse")], nonce)

    @pytest.mark.asyncio
    async def test_gateway_failure(
        self, payment_service: PaymentService, gateway, catalog, buyer
    ) -> None:
        """Gateway errors surface as GatewayError."""
        nonce = PaymentNonce(await gateway.issue_nonce())
        gateway.fail_next_sale = "Gateway exploded"

        with pytest.raises(GatewayError):
            await payment_service.place_order(buyer, [catalog.get_ref("mouse")], nonce)

    @pytest.mark.asyncio
    async def test_approved_sale_without_transaction_id(
        self, catalog: ProductCatalog, order_repository: InMemoryOrderRepository, buyer
    ) -> None:
        """A sale the gateway cannot identify records no order."""
        gateway = AsyncMock()
        gateway.sale.return_value = PaymentResult(
            transaction_id="",
            status="submitted_for_settlement",
            success=True,
            amount=Money(2500),
        )
        service = PaymentService(
            gateway=gateway,
            catalog=catalog,
            order_service=OrderRecordService(repository=order_repository),
        )

        with pytest.raises(GatewayError) as exc_info:
            await service.place_order(buyer, [catalog.get_ref("mouse")], PaymentNonce("n-1"))

        assert exc_info.value.message == "Gateway returned no transaction id"
        assert await order_repository.list_all() == []

    @pytest.mark.asyncio
    async def test_persistence_failure_voids_charge(
        self, gateway: SandboxPaymentGateway, catalog: ProductCatalog, buyer
    ) -> None:
        """A charge is voided when its order cannot be written."""
        repository = AsyncMock()
        repository.get_by_transaction_id.return_value = None
        repository.save.side_effect = RuntimeError("database down")
        service = PaymentService(
            gateway=gateway,
            catalog=catalog,
            order_service=OrderRecordService(repository=repository),
        )
        nonce = PaymentNonce(await gateway.issue_nonce())

        with pytest.raises(PersistenceError) as exc_info:
            await service.place_order(buyer, [catalog.get_ref("mouse")], nonce)

        transaction_id = exc_info.value.transaction_id
        assert gateway.transactions[transaction_id].status == "voided"
        assert gateway.settled_transactions() == []

    @pytest.mark.asyncio
    async def test_concurrent_orders_use_separate_nonces(
        self, payment_service: PaymentService, gateway, catalog, buyer
    ) -> None:
        """Each nonce produces exactly one transaction."""
        nonces = [PaymentNonce(await gateway.issue_nonce()) for _ in range(3)]
        orders = await asyncio.gather(
            *[
                payment_service.place_order(buyer, [catalog.get_ref("mouse")], nonce)
                for nonce in nonces
            ]
        )
        assert len({order.transaction_id for order in orders}) == 3
