"""FastAPI main application for the hierarchy backend."""

from contextlib import asynccontextmanager
import time

import asyncpg
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.routes import admin_hierarchy, events, jurisdictions
from app.core.config import settings
from app.core.database import close_db_pool, get_pool, init_db_pool
from app.core.exceptions import HierarchyError, UnavailableError
from app.core.logging_config import get_logger, setup_logging
from app.core.responses import error_body, error_response_dict, success_response

# Setup logging
setup_logging()
logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # HSTS only in production behind HTTPS
        if settings.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - runs on startup and shutdown."""
    logger.info("Starting hierarchy backend...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    # Initialize async database pool (skip in test environment)
    if settings.ENVIRONMENT != "test":
        await init_db_pool(settings)

    yield

    if settings.ENVIRONMENT != "test":
        await close_db_pool()
    logger.info("Shutting down hierarchy backend...")


app = FastAPI(
    title="Hierarchy Backend",
    description="""
    **Hierarchy Backend** - jurisdiction-scoped administration and event cascades

    Features:
    - State, branch and zone jurisdiction tree with approval workflow
    - Rank-based admin management (approve, disable, replace, transfer)
    - Events cascaded from super admins down to zones
    - Pickup station assignment, participation tracking and status timeline

    ## Authentication

    Include the JWT issued by the identity service in the Authorization header:

    ```
    Authorization: Bearer <your_jwt_token>
    ```

    ## API Versioning

    - `/v1/*` - Version 1 (current stable)
    - `/*` - Latest version (may change)
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add security headers middleware FIRST (before CORS)
app.add_middleware(SecurityHeadersMiddleware)

if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
    )


# Exception handlers
@app.exception_handler(HierarchyError)
async def hierarchy_exception_handler(request: Request, exc: HierarchyError):
    """Map domain errors onto their HTTP status with the error envelope."""
    if isinstance(exc, UnavailableError):
        logger.warning(f"Dependency unavailable on {request.url.path}: {exc.message}")
    response = error_response_dict(exc.to_dict(), exc.status_code)
    if isinstance(exc, UnavailableError):
        response.headers["Retry-After"] = "1"
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with standardized error responses."""
    response = error_response_dict(
        error_body(str(exc.detail), "http_error"), exc.status_code
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors[field] = error["msg"]

    return error_response_dict(
        error_body("Validation failed", "invalid_argument", fields=errors), 422
    )


@app.exception_handler(TimeoutError)
async def timeout_exception_handler(request: Request, exc: TimeoutError):
    """Bounded waits that expire surface as a retryable 503."""
    logger.warning(f"Timeout on {request.url.path}: {exc!r}")
    return await hierarchy_exception_handler(
        request, UnavailableError("The request timed out waiting on a dependency")
    )


@app.exception_handler(asyncpg.exceptions.ConnectionDoesNotExistError)
@app.exception_handler(asyncpg.exceptions.InterfaceError)
@app.exception_handler(ConnectionError)
async def connection_exception_handler(request: Request, exc: Exception):
    logger.error(f"Database connection lost on {request.url.path}: {exc!r}")
    return await hierarchy_exception_handler(
        request, UnavailableError("Database connection unavailable")
    )


@app.exception_handler(asyncpg.exceptions.PostgresError)
async def database_exception_handler(
    request: Request, exc: asyncpg.exceptions.PostgresError
):
    """Handle database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return error_response_dict(error_body("Database error occurred", "internal"), 500)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return error_response_dict(error_body("An unexpected error occurred", "internal"), 500)


# Create versioned API router
v1_router = APIRouter(prefix="/v1")
v1_router.include_router(admin_hierarchy.router)
v1_router.include_router(jurisdictions.router)
v1_router.include_router(events.router)
app.include_router(v1_router)

# Also include routers at root level (latest version)
app.include_router(admin_hierarchy.router)
app.include_router(jurisdictions.router)
app.include_router(events.router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns 200 when the database answers through the pool, 503 otherwise.
    """
    health_status = {"status": "healthy", "timestamp": time.time(), "checks": {}}
    health_status["checks"]["api"] = {"status": "healthy", "message": "API is running"}

    pool = get_pool()
    if pool is None:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": "Database pool not initialized",
        }
        return error_response_dict(
            error_body("Health check failed", "unavailable", data=health_status), 503
        )

    try:
        async with pool.acquire(timeout=settings.DB_ACQUIRE_TIMEOUT_SECONDS) as conn:
            await conn.fetchval("SELECT 1")
    except (OSError, TimeoutError, asyncpg.PostgresError) as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": f"Database check failed: {e!s}",
        }
        return error_response_dict(
            error_body("Health check failed", "unavailable", data=health_status), 503
        )

    pool_size = pool.get_size()
    pool_idle = pool.get_idle_size()
    health_status["checks"]["database"] = {
        "status": "healthy",
        "message": "Database is accessible",
        "pool": {
            "size": pool_size,
            "max": pool.get_max_size(),
            "idle": pool_idle,
            "active": pool_size - pool_idle,
        },
    }
    return success_response(data=health_status)
