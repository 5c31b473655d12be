"""Storefront API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api.cart import router as cart_router
from storefront.api.checkout import router as checkout_router
from storefront.api.health import router as health_router
from storefront.api.middleware import setup_middleware
from storefront.api.orders import admin_router as admin_orders_router
from storefront.api.orders import router as orders_router
from storefront.api.payments import router as payments_router
from storefront.domain.exceptions import DomainError
from storefront.infrastructure.config import settings
from storefront.infrastructure.logging_config import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    # Startup
    configure_logging(settings.log_level)
    logger.info(
        "Starting Storefront API",
        version=settings.api_version,
        debug=settings.debug,
        storage_backend=settings.storage_backend,
        payment_gateway=settings.payment_gateway,
    )

    if settings.storage_backend == "database":
        from storefront.infrastructure.database import init_models

        await init_models()
        logger.info("Database tables ready")

    yield

    # Shutdown
    logger.info("Shutting down Storefront API")


app = FastAPI(
    title="Storefront API",
    description="Cart, checkout and order pipeline for the storefront",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request context and unhandled error responses
setup_middleware(app)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(cart_router)
app.include_router(payments_router)
app.include_router(checkout_router)
app.include_router(orders_router)
app.include_router(admin_orders_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", [])
    else:
        error_code = "ERROR"
        message = str(detail)
        details = []

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details,
            "request_id": request_id,
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    """Handle domain errors that escaped a router as bad requests."""
    request_id = getattr(request.state, "request_id", None)

    logger.warning(
        "Unhandled domain error",
        path=request.url.path,
        error_code=exc.error_code,
        error=exc.message,
    )

    return JSONResponse(
        status_code=400,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
            "request_id": request_id,
        },
    )
