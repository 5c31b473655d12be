"""Order application service.

Records paid carts as orders and serves order listings and admin status
updates:
- Creating orders with price snapshots, deduplicated by transaction id
- Listing a buyer's orders and all orders, newest first
- Moving orders through fulfillment statuses
"""

from dataclasses import dataclass

import structlog

from storefront.domain.actors import AuthenticatedUser
from storefront.domain.entities import Order
from storefront.domain.exceptions import (
    EmptyOrderError,
    InvalidStateTransitionError,
    PersistenceError,
)
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import PaymentResult, ProductRef
from storefront.infrastructure.config import settings
from storefront.infrastructure.order_repository import (
    InMemoryOrderRepository,
    OrderRepository,
    SqlOrderRepository,
)

logger = structlog.get_logger()


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class UpdateOrderResult:
    """Result of updating an order's status."""

    order: Order | None = None
    success: bool = True
    error: str | None = None
    error_code: str | None = None


# ============================================================================
# Order Record Service
# ============================================================================


class OrderRecordService:
    """Application service for recording and managing orders."""

    def __init__(
        self,
        repository: OrderRepository | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize service.

        Args:
            repository: Order repository.
            request_id: Request ID for correlation.
        """
        self.repository = repository or get_order_repository()
        self.request_id = request_id

    async def create_order(
        self,
        buyer: AuthenticatedUser,
        items: list[ProductRef],
        payment: PaymentResult,
    ) -> Order:
        """Persist an order for a successful payment.

        Each item's price is copied into an immutable line at call time.
        A second call with the same non-empty transaction id returns the order
        recorded by the first.

        Args:
            buyer: Signed-in buyer.
            items: Purchased products at their charged prices.
            payment: Gateway sale result.

        Returns:
            The recorded order.

        Raises:
            EmptyOrderError: If items is empty.
            OrderError: If the charged amount differs from the line total.
            PersistenceError: If the order cannot be written.
        """
        if not items:
            raise EmptyOrderError()

        existing = None
        if payment.transaction_id:
            try:
                existing = await self.repository.get_by_transaction_id(payment.transaction_id)
            except Exception as e:
                raise PersistenceError(
                    f"Failed to look up order: {e}", payment.transaction_id
                ) from e
        if existing:
            logger.info(
                "Order already exists for transaction",
                transaction_id=payment.transaction_id,
                order_id=str(existing.id),
            )
            return existing

        order = Order.create(
            buyer_id=buyer.user_id,
            buyer_name=buyer.name,
            items=items,
            payment=payment,
        )

        try:
            await self.repository.save(order)
        except Exception as e:
            logger.error(
                "Failed to record order",
                order_id=str(order.id),
                transaction_id=payment.transaction_id,
                error=str(e),
                request_id=self.request_id,
            )
            raise PersistenceError(
                f"Failed to record order: {e}", payment.transaction_id
            ) from e

        logger.info(
            "Order created",
            order_id=str(order.id),
            buyer_id=buyer.user_id,
            transaction_id=payment.transaction_id,
            total_cents=order.total.amount_cents,
            request_id=self.request_id,
        )
        return order

    async def get_order(self, order_id: str) -> Order | None:
        return await self.repository.get(order_id)

    async def list_orders_for_buyer(self, buyer_id: str) -> list[Order]:
        """Orders placed by one buyer, newest first."""
        return await self.repository.list_by_buyer(buyer_id)

    async def list_all_orders(self) -> list[Order]:
        """All orders, newest first."""
        return await self.repository.list_all()

    async def update_status(
        self,
        order_id: str,
        status: str | OrderStatus,
        actor: str | None = None,
    ) -> UpdateOrderResult:
        """Move an order to a new fulfillment status.

        Args:
            order_id: Order identifier.
            status: Target status label (e.g. "Shipped").
            actor: Admin performing the change.

        Returns:
            UpdateOrderResult with the updated order.
        """
        try:
            target = OrderStatus(status)
        except ValueError:
            return UpdateOrderResult(
                success=False,
                error=f"Invalid order status: {status}",
                error_code="INVALID_STATUS",
            )

        order = await self.repository.get(order_id)
        if not order:
            return UpdateOrderResult(
                success=False,
                error="Order not found",
                error_code="ORDER_NOT_FOUND",
            )

        previous = order.status
        try:
            order.update_status(target, actor=actor)
        except InvalidStateTransitionError as e:
            return UpdateOrderResult(
                order=order,
                success=False,
                error=e.message,
                error_code=e.error_code,
            )

        await self.repository.save(order)

        logger.info(
            "Order status updated",
            order_id=order_id,
            from_status=previous.value,
            to_status=target.value,
            actor=actor,
            request_id=self.request_id,
        )
        return UpdateOrderResult(order=order)


# ============================================================================
# Repository and Service Factory
# ============================================================================


# Global repository instance
_order_repo: OrderRepository | None = None


def get_order_repository() -> OrderRepository:
    """Get order repository singleton."""
    global _order_repo
    if _order_repo is None:
        if settings.storage_backend == "database":
            from storefront.infrastructure.database import async_session_factory

            _order_repo = SqlOrderRepository(async_session_factory)
        else:
            _order_repo = InMemoryOrderRepository()
    return _order_repo


def reset_order_repository(repository: OrderRepository | None = None) -> OrderRepository:
    """Reset order repository (for testing)."""
    global _order_repo
    _order_repo = repository or InMemoryOrderRepository()
    return _order_repo


def get_order_service(request_id: str | None = None) -> OrderRecordService:
    """Get order service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        OrderRecordService instance.
    """
    return OrderRecordService(request_id=request_id)
