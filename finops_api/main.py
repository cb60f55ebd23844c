"""
Main FastAPI Application

Entry point for the FinOps dashboard API.
Configures middleware, routes, error handlers, and startup/shutdown events.

Middleware, outermost first:
    timing/security headers -> CORS -> rate limit -> tenant resolution
Authentication and role checks run per route as dependencies.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import time
from contextlib import asynccontextmanager

from finops_api.config import get_settings
from finops_api.database import engine, init_db
from finops_api.middleware.tenant import TenantMiddleware
from finops_api.middleware.rate_limit import RateLimitMiddleware
from finops_api.utils.logging import setup_logging, get_logger
from finops_api.core.permissions import PermissionDenied
from finops_api.core.exceptions import (
    AuthenticationError,
    DuplicateResourceError,
    InvalidInputError,
    NotFoundError,
    TenantIsolationError,
    RateLimitExceeded,
    UpstreamServiceError,
)

from finops_api.api.endpoints import (
    auth,
    budgets,
    chat,
    cloud_accounts,
    costs,
    integrations,
    metrics,
    optimization,
    policies,
    reports,
    tenants,
    users,
)

settings = get_settings()

VERSION = "1.0.0"

setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=(settings.ENVIRONMENT == "production")
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(f"Starting application in {settings.ENVIRONMENT} mode")

    # Production schemas are managed by migrations
    if settings.ENVIRONMENT == "development":
        logger.warning("Initializing database tables (dev mode)")
        init_db()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    engine.dispose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="FinOps Dashboard API",
    description="Multi-tenant FinOps backend: costs, optimization, budgets, policies, cloud accounts, unit economics, reports and chat",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# ============================================================================
# MIDDLEWARE CONFIGURATION
# ============================================================================
# Starlette runs the LAST added middleware first.

# Innermost: tenant context for the routes
app.add_middleware(TenantMiddleware)

# Sees every request before tenant resolution, keyed by user or IP
app.add_middleware(RateLimitMiddleware)

# Outside the rate limiter so 429s still carry CORS headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_origin_regex=settings.ALLOWED_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Tenant-ID"],
    expose_headers=["X-Tenant-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)


@app.middleware("http")
async def add_process_time_and_security_headers(request: Request, call_next):
    """Add X-Process-Time and the standard security headers."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def _error_response(exc, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": error_type},
        headers=exc.headers or {}
    )


@app.exception_handler(TenantIsolationError)
async def tenant_isolation_error_handler(request: Request, exc: TenantIsolationError):
    """
    Handle tenant isolation violations.

    CRITICAL: These should be logged and alerted on immediately.
    """
    logger.error(
        f"TENANT ISOLATION VIOLATION: {exc.detail}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "tenant_id": getattr(request.state, "tenant_id", None)
        }
    )
    return _error_response(exc, "tenant_isolation_error")


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return _error_response(exc, "authentication_error")


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Request, exc: PermissionDenied):
    return _error_response(exc, "permission_denied")


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(exc, "not_found")


@app.exception_handler(DuplicateResourceError)
async def duplicate_resource_handler(request: Request, exc: DuplicateResourceError):
    return _error_response(exc, "duplicate_resource")


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return _error_response(exc, "invalid_input")


@app.exception_handler(UpstreamServiceError)
async def upstream_error_handler(request: Request, exc: UpstreamServiceError):
    return _error_response(exc, "upstream_error")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_error_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(
        f"Rate limit exceeded: {request.url.path}",
        extra={"tenant_id": getattr(request.state, "tenant_id", None)}
    )
    return _error_response(exc, "rate_limit_exceeded")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler.

    SECURITY: Don't expose internal errors in production.
    Log full details but return generic error to client.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
            "tenant_id": getattr(request.state, "tenant_id", None)
        }
    )

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__,
                "traceback": "See logs for traceback"
            }
        )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "type": "internal_error"
        }
    )


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": VERSION
    }


@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": "FinOps Dashboard API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health"
    }


app.include_router(auth.router, prefix="/api")
app.include_router(tenants.router, prefix="/api")
app.include_router(tenants.admin_router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(users.admin_router, prefix="/api")
app.include_router(integrations.router, prefix="/api")
app.include_router(cloud_accounts.router, prefix="/api")
app.include_router(budgets.router, prefix="/api")
app.include_router(metrics.router, prefix="/api")
app.include_router(policies.router, prefix="/api")
app.include_router(reports.router, prefix="/api")
app.include_router(reports.admin_router, prefix="/api")
app.include_router(costs.router, prefix="/api")
app.include_router(optimization.router, prefix="/api")
app.include_router(chat.conversations_router, prefix="/api")
app.include_router(chat.messages_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    logger.info("=" * 80)
    logger.info("FinOps Dashboard API")
    logger.info("=" * 80)
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.DEBUG}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")
    logger.info("=" * 80)

    uvicorn.run(
        "finops_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
