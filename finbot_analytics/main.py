from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
import structlog
import time

from finbot_analytics.core.config import settings
from finbot_analytics.core.database import async_engine
from finbot_analytics.api import cohorts, notifications
from finbot_analytics.middleware.rate_limit import rate_limit_middleware

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ]
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events"""
    logger.info("application_startup", app_name=settings.app_name)
    yield
    await async_engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan
)

app.middleware("http")(rate_limit_middleware)


# Middleware for logging requests
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration * 1000, 2)
    )

    return response


# Include routers
app.include_router(cohorts.router)
app.include_router(notifications.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "app": settings.app_name}


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Finance Bot Admin Analytics API",
        "endpoints": {
            "health": "/health",
            "cohorts": "/analytics/cohorts",
            "segment_filters": "/notifications/filters",
            "segment_preview": "/notifications/preview",
            "broadcast": "/notifications/broadcast",
            "docs": "/docs"
        }
    }
