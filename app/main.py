"""
Main FastAPI application
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import time
from prometheus_client import make_asgi_app
import uuid

from app.config import settings
from app.core.database import init_db, close_db
from app.core.redis import init_redis, close_redis
from app.core.exceptions import EventHubException
from app.core.logging import setup_logging
from app.api.v1.api import api_router
from app.api.v1.endpoints import health
from app.schemas.response import ErrorDetail, ErrorResponse

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    # Initialize database
    await init_db()
    logger.info("Database connection established")

    # Initialize Redis for the summary cache
    if settings.CACHE_ENABLED:
        await init_redis()

    yield

    # Shutdown
    logger.info("Shutting down application")

    await close_db()

    if settings.CACHE_ENABLED:
        await close_redis()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Event registration with capacity limits and FIFO waitlist",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request tracking middleware
@app.middleware("http")
async def track_requests(request: Request, call_next):
    """
    Add request ID and timing headers
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(duration)

    return response


def error_response(status_code: int, code: str, message: str, details: dict = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details or {}))
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


# Exception handlers
@app.exception_handler(EventHubException)
async def eventhub_exception_handler(request: Request, exc: EventHubException):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    return error_response(404, "NOT_FOUND", "The requested resource was not found")


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Internal server error: {exc}", exc_info=exc)
    return error_response(500, "INTERNAL_ERROR", "An internal server error occurred")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "api_docs": "/docs" if settings.DEBUG else None
    }


# Include routers
app.include_router(api_router, prefix=settings.API_PREFIX)

app.include_router(
    health.router,
    prefix="/health",
    tags=["Health"]
)

# Mount Prometheus metrics endpoint
if settings.PROMETHEUS_ENABLED:
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
