"""Cart storage backends.

A cart is stored whole under its actor key as a list of serialized
product references. Every write replaces the previous value.
"""

import json
from typing import Any, Protocol

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.infrastructure.models import CartModel

logger = structlog.get_logger()


class CartStorage(Protocol):
    """Key-value storage for serialized carts."""

    async def load(self, cart_key: str) -> list[dict[str, Any]] | None: ...

    async def save(self, cart_key: str, items: list[dict[str, Any]]) -> None: ...

    async def delete(self, cart_key: str) -> None: ...


class InMemoryCartStorage:
    """Process-lifetime cart storage holding JSON blobs."""

    def __init__(self) -> None:
        self._blobs: dict[str, str] = {}

    async def load(self, cart_key: str) -> list[dict[str, Any]] | None:
        blob = self._blobs.get(cart_key)
        if blob is None:
            return None
        return json.loads(blob)

    async def save(self, cart_key: str, items: list[dict[str, Any]]) -> None:
        self._blobs[cart_key] = json.dumps(items)

    async def delete(self, cart_key: str) -> None:
        self._blobs.pop(cart_key, None)

    def keys(self) -> list[str]:
        return list(self._blobs)


class SqlCartStorage:
    """Cart storage backed by the ``carts`` table.

    Example usage:
        storage = SqlCartStorage(async_session_factory)
        await storage.save("user:42", [ref.to_dict()])
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize storage with a session factory.

        Args:
            session_factory: Factory producing async SQLAlchemy sessions.
        """
        self.session_factory = session_factory

    async def load(self, cart_key: str) -> list[dict[str, Any]] | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CartModel).where(CartModel.cart_key == cart_key)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return list(row.items)

    async def save(self, cart_key: str, items: list[dict[str, Any]]) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(CartModel, cart_key)
                if row is None:
                    session.add(CartModel(cart_key=cart_key, items=items))
                else:
                    row.items = items
        logger.debug("Cart saved", cart_key=cart_key, item_count=len(items))

    async def delete(self, cart_key: str) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(delete(CartModel).where(CartModel.cart_key == cart_key))
