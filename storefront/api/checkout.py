"""Checkout API endpoints.

Provides endpoints for the checkout page lifecycle:
- POST /checkout - open a checkout session (may be blocked with a redirect)
- GET /checkout/{id} - session state
- POST /checkout/{id}/token - retry loading the client token
- POST /checkout/{id}/payment - submit payment
- DELETE /checkout/{id} - leave the checkout page
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from storefront.api.deps import get_actor
from storefront.api.schemas import (
    CheckoutResponse,
    ErrorResponse,
    SubmitPaymentRequest,
)
from storefront.application.checkout_service import (
    CheckoutOrchestrator,
    CheckoutResult,
    get_checkout_orchestrator,
)
from storefront.application.payment_service import (
    HostedFieldsCapture,
    PaymentCapture,
    SubmittedNonceCapture,
)
from storefront.domain.actors import Actor
from storefront.domain.exceptions import CheckoutSessionNotFoundError
from storefront.infrastructure.payment_gateway import HostedFields

router = APIRouter(prefix="/checkout", tags=["Checkout"])

# HTTP status for each failure code reported by the orchestrator
ERROR_STATUS: dict[str, int] = {
    "CHECKOUT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
    "CARD_VALIDATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "STALE_NONCE": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "TOKEN_EXPIRED": status.HTTP_409_CONFLICT,
    "EMPTY_CART": status.HTTP_400_BAD_REQUEST,
    "EMPTY_ORDER": status.HTTP_400_BAD_REQUEST,
    "PRODUCT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "OUT_OF_STOCK": status.HTTP_409_CONFLICT,
    "GATEWAY_ERROR": status.HTTP_502_BAD_GATEWAY,
    "GATEWAY_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
    "PERSISTENCE_ERROR": status.HTTP_503_SERVICE_UNAVAILABLE,
    "CHECKOUT_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ============================================================================
# Dependencies
# ============================================================================


def get_orchestrator(request: Request) -> CheckoutOrchestrator:
    """Get checkout orchestrator with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_checkout_orchestrator(request_id=request_id)


def raise_for_result(result: CheckoutResult) -> None:
    """Translate a failed result into an HTTPException.

    Raises:
        HTTPException: With the mapped status and error body.
    """
    code = result.error_code or "CHECKOUT_FAILED"
    details: dict[str, str | None] = {}
    if result.session is not None:
        details["session_id"] = str(result.session.id)
        details["status"] = result.session.status.value
    if result.transaction_id:
        details["transaction_id"] = result.transaction_id
    raise HTTPException(
        status_code=ERROR_STATUS.get(code, status.HTTP_400_BAD_REQUEST),
        detail={
            "error_code": code,
            "message": result.error or "Checkout failed",
            "details": details,
        },
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start checkout",
    description=(
        "Open a checkout session for the current cart. Anonymous buyers, "
        "empty carts and buyers without an address get a blocked session "
        "with a redirect."
    ),
)
async def start_checkout(
    actor: Annotated[Actor, Depends(get_actor)],
    orchestrator: Annotated[CheckoutOrchestrator, Depends(get_orchestrator)],
) -> CheckoutResponse:
    """Start a checkout session.

    A gateway outage does not fail the request; the session is returned
    in FAILED state and the token can be retried.
    """
    result = await orchestrator.start(actor)
    return CheckoutResponse.from_session(result.session)


@router.get(
    "/{session_id}",
    response_model=CheckoutResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get checkout session",
)
async def get_checkout(
    session_id: str,
    actor: Annotated[Actor, Depends(get_actor)],
    orchestrator: Annotated[CheckoutOrchestrator, Depends(get_orchestrator)],
) -> CheckoutResponse:
    """Get a checkout session owned by the current cart.

    Raises:
        HTTPException: If the session is not found.
    """
    try:
        session = orchestrator.get_session(session_id, actor)
    except CheckoutSessionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": e.error_code, "message": e.message},
        ) from e
    return CheckoutResponse.from_session(session)


@router.post(
    "/{session_id}/token",
    response_model=CheckoutResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Retry client token",
    description="Reload the gateway client token after a failed fetch.",
)
async def retry_token(
    session_id: str,
    actor: Annotated[Actor, Depends(get_actor)],
    orchestrator: Annotated[CheckoutOrchestrator, Depends(get_orchestrator)],
) -> CheckoutResponse:
    """Retry the client token fetch.

    Raises:
        HTTPException: If the session is unknown or not in FAILED state.
    """
    result = await orchestrator.retry_token(session_id, actor)
    if result.error_code in ("CHECKOUT_NOT_FOUND", "INVALID_STATE"):
        raise_for_result(result)
    return CheckoutResponse.from_session(result.session)


@router.post(
    "/{session_id}/payment",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        202: {"model": CheckoutResponse, "description": "Duplicate submission ignored"},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Submit payment",
    description=(
        "Pay for the cart with a nonce from the browser or hosted field "
        "input. On success the cart is cleared and the browser is sent to "
        "the orders page."
    ),
)
async def submit_payment(
    session_id: str,
    request: SubmitPaymentRequest,
    response: Response,
    actor: Annotated[Actor, Depends(get_actor)],
    orchestrator: Annotated[CheckoutOrchestrator, Depends(get_orchestrator)],
) -> CheckoutResponse:
    """Submit payment for a checkout session.

    Raises:
        HTTPException: On payment or order failure; the cart is untouched.
    """
    capture: PaymentCapture
    if request.hosted_fields is not None:
        capture = HostedFieldsCapture(HostedFields(**request.hosted_fields.model_dump()))
    else:
        capture = SubmittedNonceCapture(request.nonce)

    result = await orchestrator.submit(session_id, actor, capture)

    if result.duplicate:
        response.status_code = status.HTTP_202_ACCEPTED
        return CheckoutResponse.from_session(result.session, duplicate=True)
    if not result.success:
        raise_for_result(result)
    return CheckoutResponse.from_session(result.session)


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Abandon checkout",
    description="Leave the checkout page. Pending gateway results are discarded.",
)
async def abandon_checkout(
    session_id: str,
    actor: Annotated[Actor, Depends(get_actor)],
    orchestrator: Annotated[CheckoutOrchestrator, Depends(get_orchestrator)],
) -> Response:
    """Abandon a checkout session.

    Raises:
        HTTPException: If the session is not found.
    """
    result = await orchestrator.abandon(session_id, actor)
    if not result.success:
        raise_for_result(result)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
