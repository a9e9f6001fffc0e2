"""
CriaPrompt Billing - FastAPI Application

Main entry point for the billing backend.
Provides endpoints for plans, subscriptions, quota checks and Stripe webhooks.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from criaprompt.config.settings import settings
from criaprompt.infrastructure.db.database import close_db, init_db
from criaprompt.infrastructure.exceptions import (
    BillingProviderError,
    CriaPromptError,
    ForbiddenError,
    NotFoundError,
    PreconditionError,
    QuotaExceededError,
    ValidationError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"CriaPrompt Billing starting in {settings.environment} mode...")

    try:
        await init_db()
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.warning(f"Database initialization skipped: {e}")

    yield

    # Shutdown
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.warning(f"Database shutdown error: {e}")

    logger.info("CriaPrompt Billing shutting down...")


app = FastAPI(
    title="CriaPrompt Billing",
    description="Plans, subscriptions, quotas and Stripe reconciliation for CriaPrompt",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(PreconditionError)
async def precondition_error_handler(request: Request, exc: PreconditionError):
    """Handle unconfigured plans and missing billing accounts."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(ForbiddenError)
async def forbidden_error_handler(request: Request, exc: ForbiddenError):
    """Handle ownership and permission violations."""
    return JSONResponse(
        status_code=403,
        content=exc.to_dict(),
    )


@app.exception_handler(QuotaExceededError)
async def quota_exceeded_handler(request: Request, exc: QuotaExceededError):
    """Answer with the quota-check shape so clients can show the numbers."""
    return JSONResponse(
        status_code=exc.decision.status_code or 403,
        content=exc.decision.to_response().model_dump(by_alias=True, exclude_none=True),
    )


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(
        status_code=404,
        content=exc.to_dict(),
    )


@app.exception_handler(BillingProviderError)
async def billing_provider_error_handler(request: Request, exc: BillingProviderError):
    """Handle Stripe failures."""
    return JSONResponse(
        status_code=502,
        content=exc.to_dict(),
    )


@app.exception_handler(CriaPromptError)
async def general_error_handler(request: Request, exc: CriaPromptError):
    """Handle all other application errors."""
    logger.error(f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "criaprompt-billing"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "CriaPrompt Billing API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from criaprompt.api.routes import limits, plans, resources, subscriptions, webhooks  # noqa: E402

app.include_router(plans.router, prefix="/api", tags=["Plans"])
app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(limits.router, prefix="/api", tags=["Quotas"])
app.include_router(resources.router, prefix="/api", tags=["Resources"])
