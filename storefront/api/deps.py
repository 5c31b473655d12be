"""Shared API dependencies.

Resolves the current actor from the Authorization and X-Cart-Session
headers and enforces sign-in and admin requirements.
"""

from typing import Annotated

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from storefront.application.auth_gate import get_auth_gate
from storefront.application.cart_service import get_cart_store
from storefront.domain.actors import Actor, Admin, AuthenticatedUser
from storefront.domain.exceptions import ForbiddenError, UnauthenticatedError

logger = structlog.get_logger()


def get_request_id(request: Request) -> str | None:
    """Get the correlation id set by the request ID middleware."""
    return getattr(request.state, "request_id", None)


async def get_actor(
    authorization: Annotated[str | None, Header()] = None,
    x_cart_session: Annotated[str | None, Header()] = None,
) -> Actor:
    """Resolve the current actor.

    A signed-in actor arriving with the browser context of a guest cart
    takes that cart over, so items added before login survive it. The
    actor's cart key is bound to the log context of the request.
    """
    actor = get_auth_gate().current_actor(authorization, x_cart_session)
    structlog.contextvars.bind_contextvars(cart_key=actor.cart_key)
    if isinstance(actor, AuthenticatedUser) and actor.guest_cart_key:
        await get_cart_store().adopt_guest_cart(actor.guest_cart_key, actor.cart_key)
    return actor


def require_user(actor: Annotated[Actor, Depends(get_actor)]) -> AuthenticatedUser:
    """Require a signed-in actor.

    Raises:
        HTTPException: 401 if the actor is anonymous.
    """
    try:
        return get_auth_gate().require_authenticated(actor)
    except UnauthenticatedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": e.error_code, "message": e.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def require_admin(actor: Annotated[Actor, Depends(get_actor)]) -> Admin:
    """Require an admin actor.

    Raises:
        HTTPException: 401 if anonymous, 403 if not an admin.
    """
    gate = get_auth_gate()
    try:
        return gate.require_admin(actor)
    except UnauthenticatedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": e.error_code, "message": e.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    except ForbiddenError as e:
        logger.warning("Admin access denied", user_id=e.details.get("user_id"))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error_code": e.error_code, "message": e.message},
        ) from e


def require_cart_key(actor: Annotated[Actor, Depends(get_actor)]) -> str:
    """Cart key of the current actor.

    Raises:
        HTTPException: 400 if an anonymous actor sent no X-Cart-Session header.
    """
    if actor.cart_key is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error_code": "CART_SESSION_REQUIRED",
                "message": "X-Cart-Session header is required for guest carts",
            },
        )
    return actor.cart_key
