"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.errors import ConsentTokenError, InvalidJurisdictionTextError
from app.core.logging import setup_logging
from app.db.init_db import check_consent_configuration, init_db
from app.db.session import AsyncSessionLocal
from app.middleware.rate_limit import RateLimitMiddleware, build_rate_limit_storage
from app.middleware.rbac import RBACMiddleware
from app.schemas.consent import ConsentErrorResponse

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    # Fails fast on an unknown jurisdiction or a missing consent text
    policy = check_consent_configuration()
    logger.info(f"Starting Consent Service (env={settings.env}, jurisdiction={policy.code})")

    if settings.init_db_on_startup and settings.is_dev:
        logger.info("Initializing database...")
        async with AsyncSessionLocal() as session:
            await init_db(session)

    yield

    logger.info("Shutting down Consent Service")


app = FastAPI(
    title="Consent Service API",
    description="Consent lifecycle and verification for AI-assisted clinical documentation",
    version="0.1.0",
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
    openapi_url="/openapi.json" if settings.is_dev else None,
    lifespan=lifespan,
)

# Add RBAC middleware
app.add_middleware(RBACMiddleware)

# Add rate limiting middleware
app.add_middleware(
    RateLimitMiddleware,
    storage=build_rate_limit_storage(settings.rate_limit_storage_url),
    enabled=settings.rate_limit_enabled,
)

# CORS middleware (configure appropriately for production)
if settings.is_dev:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.public_base_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(ConsentTokenError)
async def consent_token_exception_handler(
    request: Request, exc: ConsentTokenError
) -> JSONResponse:
    """Return the typed portal error body for token failures."""
    logger.info(
        f"Consent token rejected: {exc.code}",
        extra={"token_id": exc.token_id},
    )
    body = ConsentErrorResponse(error=exc.code, message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(by_alias=True),
    )


@app.exception_handler(InvalidJurisdictionTextError)
async def jurisdiction_text_exception_handler(
    request: Request, exc: InvalidJurisdictionTextError
) -> JSONResponse:
    """Reject consent texts not permitted in the active jurisdiction."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    if settings.is_prod:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


# Include API router
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/", include_in_schema=False)
async def root() -> dict:
    """Root endpoint redirect to docs."""
    return {
        "service": "Consent Service API",
        "version": "0.1.0",
        "docs": "/docs" if settings.is_dev else "Disabled in production",
    }
