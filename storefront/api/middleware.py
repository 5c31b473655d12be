"""API middleware for the storefront.

Every request is tagged in the structlog context with its correlation id
and, when the browser sends one, its cart session, so the cart, checkout
and payment lines of one shopper can be followed across requests.
Exceptions no handler caught become the standard error body.
"""

import time
from typing import Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"
CART_SESSION_HEADER = "X-Cart-Session"


def internal_error_response(request_id: str | None) -> JSONResponse:
    """Standard body for failures the client cannot act on."""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "details": [],
            "request_id": request_id,
        },
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds request correlation data to the log context.

    - ``request_id`` comes from X-Request-ID (generated when absent) and is
      echoed on the response
    - ``cart_session`` is the X-Cart-Session browser context, if sent

    An unhandled exception is logged with that context and answered with
    an INTERNAL_ERROR body carrying the request id.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id

        context = {"request_id": request_id}
        cart_session = request.headers.get(CART_SESSION_HEADER)
        if cart_session:
            context["cart_session"] = cart_session
        structlog.contextvars.bind_contextvars(**context)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "Unhandled exception",
                method=request.method,
                path=request.url.path,
                error=str(e),
            )
            response = internal_error_response(request_id)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            structlog.contextvars.unbind_contextvars(*context)

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
            request_id=request_id,
            cart_session=cart_session,
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def setup_middleware(app: FastAPI) -> None:
    """Configure the storefront middleware.

    Args:
        app: FastAPI application instance.
    """
    app.add_middleware(RequestContextMiddleware)
