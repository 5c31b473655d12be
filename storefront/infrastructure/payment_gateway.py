"""Payment gateway clients.

Provides the gateway interface consumed by the payment components, a
Braintree adapter and an in-process sandbox gateway with hosted fields,
single-use nonces and failure injection.
"""

import asyncio
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol
from uuid import uuid4

import braintree
import structlog
from braintree.exceptions.braintree_error import BraintreeError

from storefront.domain.base import utc_now
from storefront.domain.value_objects import Money, PaymentResult
from storefront.infrastructure.config import settings

logger = structlog.get_logger()

SUBMITTED_FOR_SETTLEMENT = "submitted_for_settlement"
PROCESSOR_DECLINED = "processor_declined"
VOIDED = "voided"


# ============================================================================
# Gateway Types
# ============================================================================


@dataclass(frozen=True)
class HostedFields:
    """Card fields rendered and owned by the gateway.

    The storefront passes this handle to the gateway's tokenize call and
    never inspects the values itself.
    """

    number: str = field(repr=False)
    expiration_date: str = field(repr=False)
    cvv: str = field(repr=False)
    postal_code: str | None = field(default=None, repr=False)

    def to_payload(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "expiration_date": self.expiration_date,
            "cvv": self.cvv,
            "postal_code": self.postal_code,
        }


class PaymentGatewayError(Exception):
    """Error from a payment gateway call.

    Attributes:
        message: Error description.
        status_code: HTTP status from the gateway, if any.
        error_type: One of "transport", "validation", "declined", "gateway".
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_type: str = "gateway",
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        super().__init__(message)

    @property
    def is_transport(self) -> bool:
        return self.error_type == "transport"

    @property
    def is_validation(self) -> bool:
        return self.error_type == "validation"


class PaymentGateway(Protocol):
    """Operations the storefront consumes from a payment gateway."""

    async def generate_client_token(self) -> str: ...

    async def tokenize(self, fields: HostedFields) -> str: ...

    async def sale(self, amount: Money, nonce: str) -> PaymentResult: ...

    async def void(self, transaction_id: str) -> None: ...


def _format_amount(amount: Money) -> str:
    return f"{amount.to_decimal():.2f}"


# ============================================================================
# Braintree Gateway
# ============================================================================

_BRAINTREE_ENVIRONMENTS = {
    "sandbox": braintree.Environment.Sandbox,
    "production": braintree.Environment.Production,
}


class BraintreePaymentGateway:
    """Payment gateway backed by the Braintree SDK.

    The SDK is blocking, so each call runs in a worker thread. Card fields
    are tokenized by Braintree's browser client, which posts the nonce to
    the storefront; this adapter never receives card data.
    """

    def __init__(self, gateway: braintree.BraintreeGateway | None = None) -> None:
        """Initialize gateway.

        Args:
            gateway: Configured SDK gateway; built from settings when omitted.
        """
        self.gateway = gateway or braintree.BraintreeGateway(
            braintree.Configuration(
                environment=_BRAINTREE_ENVIRONMENTS[settings.payment_environment],
                merchant_id=settings.payment_merchant_id,
                public_key=settings.payment_public_key,
                private_key=settings.payment_private_key,
                timeout=settings.gateway_timeout_seconds,
                wrap_http_exceptions=True,
            )
        )

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except BraintreeError as e:
            logger.error(
                "Braintree call failed",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise PaymentGatewayError(
                f"Braintree {operation} failed: {type(e).__name__}",
                error_type="transport",
            ) from e

    async def generate_client_token(self) -> str:
        token = await self._call("client_token", self.gateway.client_token.generate)
        if not isinstance(token, str) or not token:
            raise PaymentGatewayError("Gateway returned no client token", error_type="transport")
        return token

    async def tokenize(self, fields: HostedFields) -> str:
        raise PaymentGatewayError(
            "Card fields are tokenized by the Braintree client; submit its nonce",
            status_code=422,
            error_type="validation",
        )

    async def sale(self, amount: Money, nonce: str) -> PaymentResult:
        """Charge a nonce and submit the transaction for settlement.

        Args:
            amount: Amount to charge.
            nonce: Single-use payment method nonce.

        Returns:
            PaymentResult; ``success`` is False when the processor or the
            gateway declined the transaction.

        Raises:
            PaymentGatewayError: On SDK failure, a rejected nonce, or an
                approved sale without a transaction id.
        """
        result = await self._call(
            "sale",
            self.gateway.transaction.sale,
            {
                "amount": _format_amount(amount),
                "payment_method_nonce": nonce,
                "options": {"submit_for_settlement": True},
            },
        )
        transaction = getattr(result, "transaction", None)

        if result.is_success:
            if transaction is None or not transaction.id:
                raise PaymentGatewayError("Gateway returned no transaction id")
            return PaymentResult(
                transaction_id=transaction.id,
                status=transaction.status,
                success=True,
                amount=amount,
            )

        # Declines carry a transaction; validation errors do not
        if transaction is not None:
            return PaymentResult(
                transaction_id=transaction.id or "",
                status=transaction.status,
                success=False,
                amount=amount,
                message=result.message,
            )
        raise PaymentGatewayError(result.message, status_code=422, error_type="validation")

    async def void(self, transaction_id: str) -> None:
        result = await self._call("void", self.gateway.transaction.void, transaction_id)
        if not result.is_success:
            raise PaymentGatewayError(f"Void failed: {result.message}")


# ============================================================================
# Sandbox Gateway
# ============================================================================

# Test card numbers the sandbox treats specially
DECLINED_CARD = "4000111111111115"


def luhn_valid(number: str) -> bool:
    """Check a card number with the Luhn checksum."""
    digits = [int(c) for c in number if c.isdigit()]
    if len(digits) < 12 or len(digits) != len(number.replace(" ", "")):
        return False
    checksum = 0
    for i, digit in enumerate(reversed(digits)):
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        checksum += digit
    return checksum % 10 == 0


def _expiration_valid(expiration_date: str, now: datetime) -> bool:
    parts = expiration_date.split("/")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return False
    month, year = int(parts[0]), int(parts[1])
    if year < 100:
        year += 2000
    if not 1 <= month <= 12:
        return False
    return (year, month) >= (now.year, now.month)


@dataclass
class SandboxTransaction:
    """A transaction recorded by the sandbox gateway."""

    id: str
    amount: Money
    nonce: str
    status: str
    created_at: datetime = field(default_factory=utc_now)


class SandboxPaymentGateway:
    """In-process gateway for development and tests.

    Nonces are single use. Failures can be injected:

    - ``token_failure``: client token requests raise a transport error
    - ``token_delay``: seconds to wait before issuing a client token
    - ``sale_delay``: seconds to wait before answering a sale
    - ``fail_next_sale``: message for a one-shot gateway error on the next sale
    """

    def __init__(self) -> None:
        self._nonces: dict[str, str] = {}
        self._consumed: set[str] = set()
        self.transactions: dict[str, SandboxTransaction] = {}
        self.client_tokens_issued = 0
        self.token_failure = False
        self.token_delay = 0.0
        self.sale_delay = 0.0
        self.fail_next_sale: str | None = None

    async def generate_client_token(self) -> str:
        if self.token_delay:
            await asyncio.sleep(self.token_delay)
        if self.token_failure:
            raise PaymentGatewayError("Sandbox gateway unavailable", error_type="transport")
        self.client_tokens_issued += 1
        return f"sandbox_client_token_{secrets.token_hex(16)}"

    async def tokenize(self, fields: HostedFields) -> str:
        """Validate hosted field input and issue a nonce.

        Raises:
            PaymentGatewayError: With error_type "validation" for bad card input.
        """
        number = fields.number.replace(" ", "")
        if not luhn_valid(number):
            raise PaymentGatewayError("Credit card number is invalid", 422, "validation")
        if not _expiration_valid(fields.expiration_date, utc_now()):
            raise PaymentGatewayError("Expiration date is invalid", 422, "validation")
        if not (fields.cvv.isdigit() and len(fields.cvv) in (3, 4)):
            raise PaymentGatewayError("CVV is invalid", 422, "validation")

        nonce = f"sandbox-nonce-{uuid4()}"
        self._nonces[nonce] = number
        return nonce

    async def issue_nonce(self, card_number: str = "4111111111111111") -> str:
        """Tokenize a test card with a valid expiry and CVV."""
        next_year = utc_now().year + 1
        return await self.tokenize(
            HostedFields(number=card_number, expiration_date=f"12/{next_year}", cvv="123")
        )

    async def sale(self, amount: Money, nonce: str) -> PaymentResult:
        if self.sale_delay:
            await asyncio.sleep(self.sale_delay)
        if self.fail_next_sale is not None:
            message = self.fail_next_sale
            self.fail_next_sale = None
            raise PaymentGatewayError(message, status_code=500)

        if nonce not in self._nonces:
            raise PaymentGatewayError("Unknown payment method nonce", 422, "validation")
        if nonce in self._consumed:
            raise PaymentGatewayError(
                "Cannot use a payment method nonce more than once", 422, "validation"
            )
        self._consumed.add(nonce)

        declined = self._nonces[nonce] == DECLINED_CARD
        transaction = SandboxTransaction(
            id=secrets.token_hex(4),
            amount=amount,
            nonce=nonce,
            status=PROCESSOR_DECLINED if declined else SUBMITTED_FOR_SETTLEMENT,
        )
        self.transactions[transaction.id] = transaction

        logger.info(
            "Sandbox sale processed",
            transaction_id=transaction.id,
            amount_cents=amount.amount_cents,
            status=transaction.status,
        )
        return PaymentResult(
            transaction_id=transaction.id,
            status=transaction.status,
            success=not declined,
            amount=amount,
            message="Processor Declined" if declined else None,
        )

    async def void(self, transaction_id: str) -> None:
        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            raise PaymentGatewayError(f"Transaction not found: {transaction_id}", 404)
        transaction.status = VOIDED

    def settled_transactions(self) -> list[SandboxTransaction]:
        """Transactions that were charged and not voided."""
        return [
            t for t in self.transactions.values() if t.status == SUBMITTED_FOR_SETTLEMENT
        ]


# ============================================================================
# Gateway Factory
# ============================================================================


# Global gateway instance
_gateway: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Get the configured payment gateway singleton."""
    global _gateway
    if _gateway is None:
        if settings.payment_gateway == "braintree":
            _gateway = BraintreePaymentGateway()
        else:
            _gateway = SandboxPaymentGateway()
        logger.info("Payment gateway configured", gateway=settings.payment_gateway)
    return _gateway


def reset_payment_gateway(gateway: PaymentGateway | None = None) -> PaymentGateway:
    """Reset payment gateway (for testing)."""
    global _gateway
    _gateway = gateway or SandboxPaymentGateway()
    return _gateway
