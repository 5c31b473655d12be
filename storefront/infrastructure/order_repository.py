"""Order repositories.

Provides in-memory and SQL persistence for the Order aggregate. Both
return orders newest first and index them by payment transaction id.
"""

from datetime import datetime, timezone
from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.domain.entities import AuditEntry, Order, OrderLine
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import Money, OrderId, PaymentResult
from storefront.infrastructure.models import (
    OrderItemModel,
    OrderModel,
    OrderStatusHistoryModel,
)

logger = structlog.get_logger()


class OrderRepository(Protocol):
    """Persistence operations for orders."""

    async def save(self, order: Order) -> None: ...

    async def get(self, order_id: str) -> Order | None: ...

    async def get_by_transaction_id(self, transaction_id: str) -> Order | None: ...

    async def list_by_buyer(self, buyer_id: str) -> list[Order]: ...

    async def list_all(self) -> list[Order]: ...


# ============================================================================
# In-Memory Order Repository
# ============================================================================


class InMemoryOrderRepository:
    """In-memory repository for orders."""

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._by_transaction_id: dict[str, str] = {}

    async def save(self, order: Order) -> None:
        """Save an order."""
        order_id = str(order.id)
        self._orders[order_id] = order
        self._by_transaction_id[order.transaction_id] = order_id

    async def get(self, order_id: str) -> Order | None:
        """Get order by ID."""
        return self._orders.get(order_id)

    async def get_by_transaction_id(self, transaction_id: str) -> Order | None:
        """Get order by payment transaction ID."""
        order_id = self._by_transaction_id.get(transaction_id)
        if order_id:
            return self._orders.get(order_id)
        return None

    def _newest_first(self, orders: list[Order]) -> list[Order]:
        # Reverse insertion order first so equal timestamps keep newest first
        orders = list(reversed(orders))
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    async def list_by_buyer(self, buyer_id: str) -> list[Order]:
        return self._newest_first(
            [o for o in self._orders.values() if o.buyer_id == buyer_id]
        )

    async def list_all(self) -> list[Order]:
        return self._newest_first(list(self._orders.values()))


# ============================================================================
# SQL Order Repository
# ============================================================================


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on round trip
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _history_row(entry: AuditEntry) -> OrderStatusHistoryModel:
    return OrderStatusHistoryModel(
        action=entry.action,
        from_status=entry.from_status,
        to_status=entry.to_status,
        actor=entry.actor,
        details=entry.details,
        created_at=entry.timestamp,
    )


def _to_model(order: Order) -> OrderModel:
    return OrderModel(
        id=str(order.id),
        buyer_id=order.buyer_id,
        buyer_name=order.buyer_name,
        status=order.status.value,
        total_cents=order.total.amount_cents,
        currency=order.total.currency,
        transaction_id=order.payment.transaction_id,
        payment_status=order.payment.status,
        payment_success=order.payment.success,
        payment_amount_cents=order.payment.amount.amount_cents,
        payment_message=order.payment.message,
        version=order.version,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[
            OrderItemModel(
                position=position,
                product_id=line.product_id,
                name=line.name,
                unit=line.unit,
                price_cents=line.price.amount_cents,
                currency=line.price.currency,
            )
            for position, line in enumerate(order.lines)
        ],
        status_history=[_history_row(entry) for entry in order.status_history],
    )


def _to_domain(row: OrderModel) -> Order:
    return Order(
        id=OrderId.from_string(row.id),
        buyer_id=row.buyer_id,
        buyer_name=row.buyer_name,
        lines=tuple(
            OrderLine(
                product_id=item.product_id,
                name=item.name,
                price=Money(amount_cents=item.price_cents, currency=item.currency),
                unit=item.unit,
            )
            for item in row.items
        ),
        payment=PaymentResult(
            transaction_id=row.transaction_id,
            status=row.payment_status,
            success=row.payment_success,
            amount=Money(amount_cents=row.payment_amount_cents, currency=row.currency),
            message=row.payment_message,
        ),
        status=OrderStatus(row.status),
        status_history=[
            AuditEntry(
                action=h.action,
                from_status=h.from_status,
                to_status=h.to_status,
                actor=h.actor,
                details=h.details,
                timestamp=_aware(h.created_at),
            )
            for h in row.status_history
        ],
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SqlOrderRepository:
    """Order repository backed by the ``orders`` and ``order_items`` tables.

    Line snapshots are written once on insert; later saves only update
    the status, version and history.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize repository with a session factory.

        Args:
            session_factory: Factory producing async SQLAlchemy sessions.
        """
        self.session_factory = session_factory

    async def save(self, order: Order) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(OrderModel, str(order.id))
                if row is None:
                    session.add(_to_model(order))
                    return
                row.status = order.status.value
                row.version = order.version
                row.updated_at = order.updated_at
                known = len(row.status_history)
                for entry in order.status_history[known:]:
                    row.status_history.append(_history_row(entry))

    async def _fetch_one(self, query) -> Order | None:
        async with self.session_factory() as session:
            result = await session.execute(query)
            row = result.scalar_one_or_none()
            return _to_domain(row) if row is not None else None

    async def get(self, order_id: str) -> Order | None:
        return await self._fetch_one(select(OrderModel).where(OrderModel.id == order_id))

    async def get_by_transaction_id(self, transaction_id: str) -> Order | None:
        return await self._fetch_one(
            select(OrderModel).where(OrderModel.transaction_id == transaction_id)
        )

    async def _fetch_many(self, query) -> list[Order]:
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_domain(row) for row in result.scalars().all()]

    async def list_by_buyer(self, buyer_id: str) -> list[Order]:
        return await self._fetch_many(
            select(OrderModel)
            .where(OrderModel.buyer_id == buyer_id)
            .order_by(OrderModel.created_at.desc())
        )

    async def list_all(self) -> list[Order]:
        return await self._fetch_many(
            select(OrderModel).order_by(OrderModel.created_at.desc())
        )
