"""API layer module.

Contains FastAPI routers and request/response schemas.
"""

from storefront.api.cart import router as cart_router
from storefront.api.checkout import router as checkout_router
from storefront.api.health import router as health_router
from storefront.api.orders import admin_router as admin_orders_router
from storefront.api.orders import router as orders_router
from storefront.api.payments import router as payments_router

__all__ = [
    "admin_orders_router",
    "cart_router",
    "checkout_router",
    "health_router",
    "orders_router",
    "payments_router",
]
