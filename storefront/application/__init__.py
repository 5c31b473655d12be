"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from storefront.application.auth_gate import AuthGate, TokenVerifier, get_auth_gate
from storefront.application.cart_service import CartStore, get_cart_store
from storefront.application.checkout_service import (
    CheckoutOrchestrator,
    CheckoutResult,
    get_checkout_orchestrator,
)
from storefront.application.order_service import (
    OrderRecordService,
    get_order_service,
)
from storefront.application.payment_service import (
    HostedFieldsCapture,
    PaymentService,
    PaymentTokenProvider,
    SubmittedNonceCapture,
    get_payment_service,
)

__all__ = [
    "AuthGate",
    "TokenVerifier",
    "get_auth_gate",
    "CartStore",
    "get_cart_store",
    "CheckoutOrchestrator",
    "CheckoutResult",
    "get_checkout_orchestrator",
    "OrderRecordService",
    "get_order_service",
    "HostedFieldsCapture",
    "PaymentService",
    "PaymentTokenProvider",
    "SubmittedNonceCapture",
    "get_payment_service",
]
