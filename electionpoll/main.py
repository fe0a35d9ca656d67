"""Main FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.orm import Session
from sqlalchemy import text

from electionpoll.api.v1.router import api_router
from electionpoll.api.deps import get_db
from electionpoll.core.config import settings
from electionpoll.core.errors import PollEngineError, ValidationFailed
from electionpoll.core.rate_limit import limiter
from electionpoll.core.logging_config import setup_logging, get_logger
from electionpoll.middleware import LoggingMiddleware
from electionpoll.schemas import ErrorResponse
from electionpoll.services.notifications import close_notifier
from electionpoll.services.scheduler import start_scheduler, stop_scheduler

# Initialize structured logging
setup_logging(level=settings.LOG_LEVEL, json_logs=settings.ENVIRONMENT == "production")
logger = get_logger(__name__)

# Validate production configuration after logging is configured
if settings.ENVIRONMENT == "production":
    settings.validate_production_config()

logger.info(
    "application_starting",
    app_title=settings.APP_TITLE,
    app_version=settings.APP_VERSION,
    environment=settings.ENVIRONMENT,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry sweep with the app and stop it on shutdown."""
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    try:
        yield
    finally:
        if settings.SCHEDULER_ENABLED:
            stop_scheduler()
        close_notifier()


app = FastAPI(
    title=settings.APP_TITLE,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter

# Add rate limit exceeded exception handler
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(PollEngineError)
async def poll_engine_error_handler(request: Request, exc: PollEngineError) -> JSONResponse:
    """Render every domain error as the standard error body with its status code."""
    logger.info("request_rejected", error_code=exc.code, status_code=exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.from_error(exc).model_dump(),
    )


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return ValidationFailed.default_message
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", ValidationFailed.default_message).removeprefix("Value error, ")
    return f"{field}: {message}" if field else message


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body/parameter validation failures as ``validation_error``."""
    return await poll_engine_error_handler(request, ValidationFailed(_describe_validation_error(exc)))


# Add logging middleware (must be added before other middleware for proper request tracking)
app.add_middleware(LoggingMiddleware)


# Add API versioning middleware
@app.middleware("http")
async def add_api_version_header(request: Request, call_next):
    """Add X-API-Version header to all responses for version tracking."""
    response = await call_next(request)
    response.headers["X-API-Version"] = settings.APP_VERSION
    return response

# CORS middleware - configured for cookie-based auth
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,  # Required for the admin cookie
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-API-Version", "X-Request-ID"],
)

# Include API router
app.include_router(api_router)


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
        - status: "healthy" or "unhealthy"
        - database: connection status and pool metrics (when the pool has them)
        - scheduler: whether the expiry sweep runs in this process
        - environment: current environment setting

    Returns 503 if the database is unreachable.
    """
    from electionpoll.db.session import engine

    pool = engine.pool
    pool_stats = {}
    if hasattr(pool, "size"):
        pool_stats = {
            "size": pool.size(),
            "checked_in": pool.checkedin(),
            "checked_out": pool.checkedout(),
            "overflow": pool.overflow(),
        }

    health_status = {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "scheduler": {"enabled": settings.SCHEDULER_ENABLED},
        "database": {
            "status": "connected",
            "pool": pool_stats,
        },
    }

    try:
        # Test database connection with a simple query
        db.execute(text("SELECT 1"))
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["database"]["status"] = f"error: {str(e)}"
        logger.error("health_check_failed", error=str(e))
        raise HTTPException(status_code=503, detail=health_status)

    return health_status
