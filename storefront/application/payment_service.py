"""Payment application services.

Covers the gateway-facing side of checkout:
- Fetching client tokens with a bounded wait
- Obtaining single-use nonces without touching card data
- Placing orders: validate, charge, record, void on write failure
"""

import asyncio
from collections import Counter
from typing import Protocol

import structlog

from storefront.application.order_service import OrderRecordService
from storefront.domain.actors import AuthenticatedUser
from storefront.domain.entities import Order
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
from storefront.domain.value_objects import (
    PaymentNonce,
    PaymentToken,
    ProductRef,
    sum_money,
)
from storefront.infrastructure.catalog import ProductCatalog, get_catalog
from storefront.infrastructure.config import settings
from storefront.infrastructure.payment_gateway import (
    HostedFields,
    PaymentGateway,
    PaymentGatewayError,
    get_payment_gateway,
)

logger = structlog.get_logger()

NONCE_REQUIRED_MESSAGE = "Payment method nonce is required"


# ============================================================================
# Payment Token Provider
# ============================================================================


class PaymentTokenProvider:
    """Fetches short-lived client tokens from the gateway."""

    def __init__(
        self,
        gateway: PaymentGateway | None = None,
        timeout_seconds: float | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        """Initialize provider.

        Args:
            gateway: Payment gateway.
            timeout_seconds: Longest time to wait for the gateway.
            ttl_seconds: Lifetime assumed for issued tokens.
        """
        self.gateway = gateway or get_payment_gateway()
        self.timeout_seconds = timeout_seconds or settings.gateway_timeout_seconds
        self.ttl_seconds = ttl_seconds or settings.client_token_ttl_seconds

    async def fetch_client_token(self) -> PaymentToken:
        """Fetch a client token.

        Returns:
            PaymentToken with its expiry.

        Raises:
            GatewayUnavailableError: On timeout or gateway failure.
        """
        try:
            value = await asyncio.wait_for(
                self.gateway.generate_client_token(),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                "Client token request timed out",
                timeout_seconds=self.timeout_seconds,
            )
            raise GatewayUnavailableError() from e
        except PaymentGatewayError as e:
            logger.warning("Client token request failed", error=e.message)
            raise GatewayUnavailableError() from e
        except Exception as e:
            logger.exception("Unexpected client token failure", error=str(e))
            raise GatewayUnavailableError() from e

        logger.info("Client token issued", ttl_seconds=self.ttl_seconds)
        return PaymentToken.with_ttl(value, self.ttl_seconds)


# ============================================================================
# Payment Capture
# ============================================================================


class PaymentCapture(Protocol):
    """Source of a single-use payment nonce."""

    async def request_nonce(self) -> PaymentNonce: ...


class HostedFieldsCapture:
    """Tokenizes gateway-owned card fields through the gateway."""

    def __init__(self, fields: HostedFields, gateway: PaymentGateway | None = None) -> None:
        self.fields = fields
        self.gateway = gateway or get_payment_gateway()

    async def request_nonce(self) -> PaymentNonce:
        """Ask the gateway to tokenize the hosted fields.

        Raises:
            CardValidationError: If the gateway rejects the card input.
            GatewayError: On any other gateway failure.
        """
        try:
            nonce = await self.gateway.tokenize(self.fields)
        except PaymentGatewayError as e:
            if e.is_validation:
                raise CardValidationError(e.message) from e
            raise GatewayError(e.message, details={"status_code": e.status_code}) from e
        return PaymentNonce(nonce)


class SubmittedNonceCapture:
    """Wraps a nonce the browser obtained from the gateway directly."""

    def __init__(self, nonce: str | None) -> None:
        self.nonce = nonce

    async def request_nonce(self) -> PaymentNonce:
        if not self.nonce or not self.nonce.strip():
            raise CardValidationError(NONCE_REQUIRED_MESSAGE)
        return PaymentNonce(self.nonce.strip())


# ============================================================================
# Payment Service
# ============================================================================


class PaymentService:
    """Charges a nonce for a set of products and records the order.

    Example usage:
        service = PaymentService(gateway, catalog, order_service)
        order = await service.place_order(buyer, cart_items, nonce)
    """

    def __init__(
        self,
        gateway: PaymentGateway | None = None,
        catalog: ProductCatalog | None = None,
        order_service: OrderRecordService | None = None,
    ) -> None:
        self.gateway = gateway or get_payment_gateway()
        self.catalog = catalog or get_catalog()
        self.order_service = order_service or OrderRecordService()

    def _snapshot(self, items: list[ProductRef]) -> list[ProductRef]:
        """Resolve items against the catalog at its current prices.

        Raises:
            ProductNotFoundError: If an item is not in the catalog.
            OutOfStockError: If an item appears more often than it is stocked.
        """
        wanted = Counter(item.product_id for item in items)
        for product_id, count in wanted.items():
            product = self.catalog.get(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            if product.stock < count:
                raise OutOfStockError(product_id, product.name)
        return [self.catalog.get_ref(item.product_id) for item in items]

    async def _void(self, transaction_id: str) -> None:
        try:
            await self.gateway.void(transaction_id)
        except PaymentGatewayError as e:
            logger.error(
                "Failed to void charge after order write failure",
                transaction_id=transaction_id,
                error=e.message,
            )
            return
        logger.warning("Charge voided after order write failure", transaction_id=transaction_id)

    async def place_order(
        self,
        buyer: AuthenticatedUser,
        items: list[ProductRef],
        nonce: PaymentNonce | None,
    ) -> Order:
        """Charge the buyer for items and record the order.

        Args:
            buyer: Signed-in buyer.
            items: Products to buy; a product listed twice is bought twice.
            nonce: Single-use payment nonce.

        Returns:
            The recorded order.

        Raises:
            CardValidationError: If the nonce is missing or rejected.
            EmptyOrderError: If items is empty.
            ProductNotFoundError: If a product is unknown.
            OutOfStockError: If a product lacks stock.
            GatewayError: If the gateway fails or declines the sale.
            PersistenceError: If the order cannot be recorded after the charge.
        """
        if nonce is None or not nonce.value:
            raise CardValidationError(NONCE_REQUIRED_MESSAGE)
        if not items:
            raise EmptyOrderError()

        snapshot = self._snapshot(items)
        total = sum_money([item.price for item in snapshot])
        if not total.is_positive():
            raise OrderError("Order total must be positive", details={"total_cents": 0})

        try:
            result = await self.gateway.sale(total, nonce.value)
        except PaymentGatewayError as e:
            logger.warning(
                "Payment sale failed",
                buyer_id=buyer.user_id,
                amount_cents=total.amount_cents,
                error=e.message,
            )
            if e.is_validation:
                raise CardValidationError(e.message) from e
            raise GatewayError(e.message, details={"status_code": e.status_code}) from e

        if not result.success:
            logger.warning(
                "Payment declined",
                buyer_id=buyer.user_id,
                transaction_id=result.transaction_id,
                status=result.status,
            )
            raise GatewayError(
                result.message or "Payment was declined",
                details={"transaction_id": result.transaction_id, "status": result.status},
            )

        if not result.transaction_id:
            logger.error(
                "Gateway approved a sale without a transaction id",
                buyer_id=buyer.user_id,
                amount_cents=total.amount_cents,
                status=result.status,
            )
            raise GatewayError(
                "Gateway returned no transaction id", details={"status": result.status}
            )

        try:
            return await self.order_service.create_order(buyer, snapshot, result)
        except PersistenceError:
            await self._void(result.transaction_id)
            raise


# ============================================================================
# Service Factory
# ============================================================================


def get_payment_service(request_id: str | None = None) -> PaymentService:
    """Get payment service instance."""
    return PaymentService(order_service=OrderRecordService(request_id=request_id))


def get_token_provider() -> PaymentTokenProvider:
    """Get payment token provider instance."""
    return PaymentTokenProvider()
