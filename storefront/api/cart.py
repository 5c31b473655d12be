"""Cart API endpoints.

Provides endpoints for the actor's cart:
- GET /cart - cart contents and total
- POST /cart/items - add a product
- DELETE /cart/items/{product_id} - remove a product
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from storefront.api.deps import get_actor, require_cart_key
from storefront.api.schemas import (
    AddCartItemRequest,
    CartItemSchema,
    CartResponse,
    ErrorResponse,
    PriceSchema,
)
from storefront.application.cart_service import CartStore, get_cart_store
from storefront.domain.actors import Actor
from storefront.domain.exceptions import ProductNotFoundError
from storefront.domain.value_objects import ProductRef, sum_money

router = APIRouter(prefix="/cart", tags=["Cart"])

EMPTY_CART_MESSAGE = "Your Cart Is Empty"


def get_store() -> CartStore:
    """Get cart store."""
    return get_cart_store()


def cart_to_response(
    cart_key: str | None,
    items: list[ProductRef],
    message: str | None = None,
) -> CartResponse:
    """Convert cart items to CartResponse."""
    return CartResponse(
        cart_key=cart_key,
        items=[CartItemSchema.from_ref(item) for item in items],
        item_count=len(items),
        total=PriceSchema.from_money(sum_money([item.price for item in items])),
        message=message if items or message else EMPTY_CART_MESSAGE,
    )


@router.get(
    "",
    response_model=CartResponse,
    summary="Get cart",
    description="Get the current actor's cart with its total.",
)
async def get_cart(
    actor: Annotated[Actor, Depends(get_actor)],
    store: Annotated[CartStore, Depends(get_store)],
) -> CartResponse:
    """Get cart contents.

    An anonymous actor without a cart session has an empty cart.
    """
    items = await store.get_all(actor.cart_key)
    return cart_to_response(actor.cart_key, items)


@router.post(
    "/items",
    response_model=CartResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Add item to cart",
    description="Add a catalog product to the cart. Adding a product twice is a no-op.",
)
async def add_item(
    request: AddCartItemRequest,
    cart_key: Annotated[str, Depends(require_cart_key)],
    store: Annotated[CartStore, Depends(get_store)],
) -> CartResponse:
    """Add a product to the cart.

    Raises:
        HTTPException: If the product is not in the catalog.
    """
    try:
        result = await store.add(cart_key, request.product_id)
    except ProductNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": e.error_code, "message": e.message},
        ) from e
    return cart_to_response(cart_key, result.items, result.message)


@router.delete(
    "/items/{product_id}",
    response_model=CartResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Remove item from cart",
    description="Remove a product from the cart. Removing an absent product is a no-op.",
)
async def remove_item(
    product_id: str,
    cart_key: Annotated[str, Depends(require_cart_key)],
    store: Annotated[CartStore, Depends(get_store)],
) -> CartResponse:
    """Remove a product from the cart."""
    items = await store.remove(cart_key, product_id)
    return cart_to_response(cart_key, items)
