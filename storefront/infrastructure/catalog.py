"""Product catalog.

Read-side product lookup used by the cart and the payment service. The
catalog owns the live price; carts and orders copy it.
"""

from dataclasses import dataclass

import structlog

from storefront.domain.exceptions import ProductNotFoundError
from storefront.domain.value_objects import Money, ProductRef

logger = structlog.get_logger()


@dataclass
class Product:
    """A product as the catalog currently knows it.

    Attributes:
        id: Product identifier.
        name: Display name.
        price: Current unit price.
        stock: Units available.
        unit: Sales unit label.
    """

    id: str
    name: str
    price: Money
    stock: int = 0
    unit: str = "each"

    def to_ref(self) -> ProductRef:
        """Reference to this product at its current price."""
        return ProductRef(
            product_id=self.id,
            name=self.name,
            price=self.price,
            unit=self.unit,
        )


class ProductCatalog:
    """In-memory product catalog.

    Example usage:
        catalog = ProductCatalog()
        catalog.add(Product(id="p1", name="Laptop", price=Money(99900), stock=3))
        ref = catalog.get_ref("p1")
    """

    def __init__(self, products: list[Product] | None = None) -> None:
        self._products: dict[str, Product] = {}
        for product in products or []:
            self.add(product)

    def add(self, product: Product) -> Product:
        """Add or replace a product."""
        self._products[product.id] = product
        return product

    def get(self, product_id: str) -> Product | None:
        """Get product by ID.

        Args:
            product_id: Product identifier.

        Returns:
            Product if found, None otherwise.
        """
        return self._products.get(product_id)

    def get_ref(self, product_id: str) -> ProductRef:
        """Get a product reference at the current price.

        Raises:
            ProductNotFoundError: If the product is unknown.
        """
        product = self.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product.to_ref()

    def list_products(self) -> list[Product]:
        return list(self._products.values())

    def update_price(self, product_id: str, price: Money) -> Product:
        """Change a product's live price.

        Existing order snapshots are unaffected.

        Raises:
            ProductNotFoundError: If the product is unknown.
        """
        product = self.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        old_price = product.price
        product.price = price
        logger.info(
            "Product price updated",
            product_id=product_id,
            old_price_cents=old_price.amount_cents,
            new_price_cents=price.amount_cents,
        )
        return product

    def update_stock(self, product_id: str, stock: int) -> Product:
        """Set the units available for a product.

        Raises:
            ProductNotFoundError: If the product is unknown.
        """
        product = self.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        product.stock = stock
        return product


def _demo_products() -> list[Product]:
    return [
        Product(id="laptop-pro-14", name="Laptop Pro 14", price=Money(99900), stock=10),
        Product(id="wireless-mouse", name="Wireless Mouse", price=Money(2999), stock=50),
        Product(id="usb-c-hub", name="USB-C Hub", price=Money(4599), stock=25),
        Product(id="mech-keyboard", name="Mechanical Keyboard", price=Money(12900), stock=15),
        Product(id="monitor-27", name="27in Monitor", price=Money(32900), stock=0),
    ]


# Global catalog instance
_catalog: ProductCatalog | None = None


def get_catalog() -> ProductCatalog:
    """Get product catalog singleton, seeded with demo products."""
    global _catalog
    if _catalog is None:
        _catalog = ProductCatalog(_demo_products())
    return _catalog


def reset_catalog(products: list[Product] | None = None) -> ProductCatalog:
    """Reset product catalog (for testing)."""
    global _catalog
    _catalog = ProductCatalog(products if products is not None else _demo_products())
    return _catalog
