"""Payment API endpoints.

Provides:
- GET /payments/client-token - client token for the gateway drop-in
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from storefront.api.schemas import ClientTokenResponse, ErrorResponse
from storefront.application.payment_service import PaymentTokenProvider, get_token_provider
from storefront.domain.exceptions import GatewayUnavailableError

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get(
    "/client-token",
    response_model=ClientTokenResponse,
    responses={503: {"model": ErrorResponse}},
    summary="Get payment client token",
    description="Fetch a short-lived client token from the payment gateway.",
)
async def get_client_token(
    provider: Annotated[PaymentTokenProvider, Depends(get_token_provider)],
) -> ClientTokenResponse:
    """Fetch a client token.

    Raises:
        HTTPException: 503 if the gateway does not answer in time.
    """
    try:
        token = await provider.fetch_client_token()
    except GatewayUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error_code": e.error_code, "message": e.message},
        ) from e

    return ClientTokenResponse(
        client_token=token.value,
        issued_at=token.issued_at,
        expires_at=token.expires_at,
    )
