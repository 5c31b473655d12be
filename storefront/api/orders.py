"""Order API endpoints.

Provides endpoints for buyers and the back office:
- GET /orders - the signed-in buyer's orders, newest first
- GET /admin/orders - all orders, newest first
- PUT /admin/orders/{id}/status - change an order's fulfillment status
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from storefront.api.deps import require_admin, require_user
from storefront.api.schemas import (
    ErrorResponse,
    OrderResponse,
    OrdersListResponse,
    UpdateOrderStatusRequest,
    UpdateOrderStatusResponse,
)
from storefront.application.order_service import OrderRecordService, get_order_service
from storefront.domain.actors import Admin, AuthenticatedUser

router = APIRouter(prefix="/orders", tags=["Orders"])
admin_router = APIRouter(prefix="/admin/orders", tags=["Admin"])

STATUS_UPDATED_MESSAGE = "Order Status Updated Successfully"


# ============================================================================
# Dependencies
# ============================================================================


def get_service(request: Request) -> OrderRecordService:
    """Get order service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_order_service(request_id=request_id)


# ============================================================================
# Buyer Endpoints
# ============================================================================


@router.get(
    "",
    response_model=OrdersListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List my orders",
    description="Get the signed-in buyer's orders, newest first.",
)
async def list_my_orders(
    buyer: Annotated[AuthenticatedUser, Depends(require_user)],
    service: Annotated[OrderRecordService, Depends(get_service)],
) -> OrdersListResponse:
    """List the buyer's orders."""
    orders = await service.list_orders_for_buyer(buyer.user_id)
    return OrdersListResponse(
        items=[OrderResponse.from_order(order) for order in orders],
        total=len(orders),
    )


# ============================================================================
# Admin Endpoints
# ============================================================================


@admin_router.get(
    "",
    response_model=OrdersListResponse,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
    },
    summary="List all orders",
    description="Get every order, newest first.",
)
async def list_all_orders(
    admin: Annotated[Admin, Depends(require_admin)],
    service: Annotated[OrderRecordService, Depends(get_service)],
) -> OrdersListResponse:
    """List all orders."""
    orders = await service.list_all_orders()
    return OrdersListResponse(
        items=[OrderResponse.from_order(order) for order in orders],
        total=len(orders),
    )


@admin_router.put(
    "/{order_id}/status",
    response_model=UpdateOrderStatusResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Update order status",
    description="Move an order to Processing, Shipped, Delivered or Cancelled.",
)
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    admin: Annotated[Admin, Depends(require_admin)],
    service: Annotated[OrderRecordService, Depends(get_service)],
) -> UpdateOrderStatusResponse:
    """Update an order's fulfillment status.

    Raises:
        HTTPException: If the status is missing or invalid, or the order
            is not found.
    """
    if not request.status or not request.status.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": "STATUS_REQUIRED", "message": "Status is required"},
        )

    result = await service.update_status(order_id, request.status.strip(), actor=admin.user_id)

    if not result.success or not result.order:
        status_code = {
            "ORDER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
            "INVALID_STATE": status.HTTP_409_CONFLICT,
        }.get(result.error_code or "", status.HTTP_400_BAD_REQUEST)
        raise HTTPException(
            status_code=status_code,
            detail={
                "error_code": result.error_code or "UPDATE_FAILED",
                "message": result.error or "Failed to update order status",
            },
        )

    return UpdateOrderStatusResponse(
        message=STATUS_UPDATED_MESSAGE,
        order=OrderResponse.from_order(result.order),
    )
