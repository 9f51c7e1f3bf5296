"""FastAPI main application."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1 import access, events, reverification, team, verification
from app.config import settings
from app.core.database import close_db, init_db
from app.core.errors import AppError, RateLimitError
from app.core.logging_config import setup_logging
from app.core.metrics import create_metrics_app, setup_metrics
from app.middleware.error_handler import ErrorHandlerMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware

_logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()

    # Refuse to start half-configured: ConfigurationError names every missing field
    settings.validate_runtime()

    await init_db()

    metrics_task = None
    if settings.METRICS_ENABLED:
        import uvicorn

        metrics_config = uvicorn.Config(
            create_metrics_app(),
            host="0.0.0.0",  # nosec B104 (metrics port is internal-only, protected by basic auth)
            port=settings.METRICS_ADMIN_PORT,
            log_level="warning",
        )
        metrics_task = asyncio.create_task(uvicorn.Server(metrics_config).serve())
        _logger.info("Metrics admin server started on port %s", settings.METRICS_ADMIN_PORT)

    _logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)

    yield

    if metrics_task is not None:
        metrics_task.cancel()
    await close_db()
    _logger.info("%s shutdown complete", settings.APP_NAME)


# Interactive docs only outside production
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
)

# Instrument the app with Prometheus (metrics served on admin port, not here)
if settings.METRICS_ENABLED:
    setup_metrics(app)

# Error handler - Catch uncaught exceptions with PII redaction
app.add_middleware(ErrorHandlerMiddleware)

# Request logging - correlation id for every request
app.add_middleware(RequestLoggingMiddleware)

# CORS outermost so preflight and error responses carry the headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        _logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    _logger.debug("Validation error on %s: %s", request.url.path, exc.errors())
    fields = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request",
                "details": {"fields": fields},
            }
        },
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


app.include_router(verification.router, prefix="/api/v1/verification", tags=["Verification"])
app.include_router(
    reverification.router, prefix="/api/v1/reverification", tags=["Re-verification"]
)
app.include_router(team.router, prefix="/api/v1/team", tags=["Team"])
app.include_router(access.router, prefix="/api/v1/access", tags=["Access"])
app.include_router(events.router, prefix="/api/v1/events", tags=["Events"])
