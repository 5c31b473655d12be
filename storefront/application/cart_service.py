"""Cart application service.

Actor-scoped cart of product references. Each mutation reads the whole
cart, changes it and writes it back under a per-key lock.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

import structlog

from storefront.domain.value_objects import Money, ProductRef, sum_money
from storefront.infrastructure.cart_storage import (
    CartStorage,
    InMemoryCartStorage,
    SqlCartStorage,
)
from storefront.infrastructure.catalog import ProductCatalog, get_catalog
from storefront.infrastructure.config import settings

logger = structlog.get_logger()

ITEM_ADDED_MESSAGE = "Item Added to cart"


@dataclass
class AddItemResult:
    """Result of adding a product to a cart."""

    items: list[ProductRef] = field(default_factory=list)
    added: bool = True
    message: str = ITEM_ADDED_MESSAGE


class CartStore:
    """Cart store keyed by actor key (``guest:<session>`` or ``user:<id>``).

    Example usage:
        store = CartStore(InMemoryCartStorage(), catalog)
        await store.add("user:42", "laptop-pro-14")
        total = await store.total("user:42")
    """

    def __init__(
        self,
        storage: CartStorage | None = None,
        catalog: ProductCatalog | None = None,
    ) -> None:
        """Initialize store.

        Args:
            storage: Storage backend for serialized carts.
            catalog: Catalog used to resolve product ids.
        """
        self.storage = storage or InMemoryCartStorage()
        self.catalog = catalog or get_catalog()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._pending_clears: set[str] = set()

    def _borrow_lock(self, cart_key: str) -> asyncio.Lock:
        lock = self._locks.get(cart_key)
        if lock is None:
            lock = self._locks[cart_key] = asyncio.Lock()
        self._lock_users[cart_key] = self._lock_users.get(cart_key, 0) + 1
        return lock

    def _return_lock(self, cart_key: str) -> None:
        # The last holder or waiter drops the lock so idle keys are not kept
        users = self._lock_users[cart_key] - 1
        if users:
            self._lock_users[cart_key] = users
        else:
            del self._lock_users[cart_key]
            del self._locks[cart_key]

    @asynccontextmanager
    async def _locked(self, *cart_keys: str) -> AsyncIterator[None]:
        # Sorted acquisition keeps two-key operations deadlock free
        keys = sorted(set(cart_keys))
        locks = [self._borrow_lock(key) for key in keys]
        acquired: list[asyncio.Lock] = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in keys:
                self._return_lock(key)

    async def _read(self, cart_key: str) -> list[ProductRef]:
        if cart_key in self._pending_clears:
            await self.storage.delete(cart_key)
            self._pending_clears.discard(cart_key)
            logger.info("Deferred cart clear applied", cart_key=cart_key)
            return []
        data = await self.storage.load(cart_key)
        if not data:
            return []
        return [ProductRef.from_dict(item) for item in data]

    async def _write(self, cart_key: str, items: list[ProductRef]) -> None:
        await self.storage.save(cart_key, [item.to_dict() for item in items])

    async def add(self, cart_key: str, product_id: str) -> AddItemResult:
        """Add a product to the cart.

        Adding a product already in the cart leaves the cart unchanged.

        Args:
            cart_key: Actor key.
            product_id: Catalog product id.

        Returns:
            AddItemResult with the cart contents after the add.

        Raises:
            ProductNotFoundError: If the product is not in the catalog.
        """
        product = self.catalog.get_ref(product_id)
        async with self._locked(cart_key):
            items = await self._read(cart_key)
            if any(item.product_id == product_id for item in items):
                return AddItemResult(items=items, added=False)
            items.append(product)
            await self._write(cart_key, items)

        logger.info(
            "Cart item added",
            cart_key=cart_key,
            product_id=product_id,
            item_count=len(items),
        )
        return AddItemResult(items=items)

    async def remove(self, cart_key: str, product_id: str) -> list[ProductRef]:
        """Remove a product; removing an absent product is a no-op."""
        async with self._locked(cart_key):
            items = await self._read(cart_key)
            remaining = [item for item in items if item.product_id != product_id]
            if len(remaining) == len(items):
                return items
            await self._write(cart_key, remaining)

        logger.info("Cart item removed", cart_key=cart_key, product_id=product_id)
        return remaining

    async def get_all(self, cart_key: str | None) -> list[ProductRef]:
        """Cart contents in insertion order (empty for a missing key)."""
        if not cart_key:
            return []
        return await self._read(cart_key)

    async def clear(self, cart_key: str) -> None:
        async with self._locked(cart_key):
            await self.storage.delete(cart_key)
            self._pending_clears.discard(cart_key)
        logger.info("Cart cleared", cart_key=cart_key)

    def defer_clear(self, cart_key: str) -> None:
        """Clear the cart on its next read.

        Used when a paid cart could not be deleted right away; the items
        still stored under the key are the ones already paid for.
        """
        self._pending_clears.add(cart_key)
        logger.warning("Cart clear deferred", cart_key=cart_key)

    async def total(self, cart_key: str | None) -> Money:
        """Sum of member prices, recomputed on every call."""
        return sum_money([item.price for item in await self.get_all(cart_key)])

    async def adopt_guest_cart(self, guest_key: str, user_key: str) -> list[ProductRef]:
        """Move a pre-login cart into the user's cart.

        The result is the user's items followed by guest items the user
        does not already have. The guest cart is deleted.

        Args:
            guest_key: Key of the anonymous cart.
            user_key: Key of the signed-in user's cart.

        Returns:
            The user's cart after the merge.
        """
        async with self._locked(guest_key, user_key):
            guest_items = await self._read(guest_key)
            user_items = await self._read(user_key)
            if not guest_items:
                return user_items

            known = {item.product_id for item in user_items}
            merged = user_items + [
                item for item in guest_items if item.product_id not in known
            ]
            await self._write(user_key, merged)
            await self.storage.delete(guest_key)

        logger.info(
            "Guest cart adopted",
            guest_key=guest_key,
            user_key=user_key,
            item_count=len(merged),
        )
        return merged


def _default_storage() -> CartStorage:
    if settings.storage_backend == "database":
        from storefront.infrastructure.database import async_session_factory

        return SqlCartStorage(async_session_factory)
    return InMemoryCartStorage()


# Global store instance
_cart_store: CartStore | None = None


def get_cart_store() -> CartStore:
    """Get cart store singleton."""
    global _cart_store
    if _cart_store is None:
        _cart_store = CartStore(storage=_default_storage())
    return _cart_store


def reset_cart_store(
    storage: CartStorage | None = None,
    catalog: ProductCatalog | None = None,
) -> CartStore:
    """Reset cart store (for testing)."""
    global _cart_store
    _cart_store = CartStore(storage=storage, catalog=catalog)
    return _cart_store
