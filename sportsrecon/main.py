"""
Main FastAPI application for the Sports Data Reconciliation API.
"""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from sportsrecon.core import metrics
from sportsrecon.core.config import settings
from sportsrecon.core.database import SessionLocal, init_db
from sportsrecon.core.exceptions import ReconciliationError
from sportsrecon.core.logging import configure_logging, get_correlation_id, get_logger
from sportsrecon.core.middleware import CorrelationIdMiddleware
from sportsrecon.core.rate_limit import limiter
from sportsrecon.api.routes import bulk_comparison, comparisons, ignored_games, mappings
from sportsrecon.services.reconciliation.adapters.circuit_breaker import get_all_breaker_states

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

configure_logging(
    level=settings.LOG_LEVEL,
    json_output=settings.LOG_JSON,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENVIRONMENT})")

    init_db()

    scheduler_enabled = settings.SCHEDULER_ENABLED and not settings.is_test()
    if scheduler_enabled:
        from sportsrecon.core.scheduler import start_scheduler
        await start_scheduler()
        logger.info("Maintenance scheduler started")
    metrics.update_scheduler_metrics()

    logger.info("Application started")

    yield

    if scheduler_enabled:
        from sportsrecon.core.scheduler import stop_scheduler
        await stop_scheduler()
        logger.info("Maintenance scheduler stopped")
    logger.info("Shutting down application")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Reconciles scraped team rosters and schedules against authoritative sports data sources",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add correlation ID middleware (must be added before CORS for proper header handling)
app.add_middleware(CorrelationIdMiddleware)

# Prometheus metrics must be wired before routes are added
instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# ERROR HANDLING
# ============================================================================

@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    """Translate the error taxonomy into JSON error bodies."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    body = exc.to_dict()
    body["correlation_id"] = get_correlation_id()
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "detail": "Internal server error",
            "correlation_id": get_correlation_id(),
        },
    )


# ============================================================================
# ROUTES
# ============================================================================

app.include_router(mappings.router, prefix="/api/v1")
app.include_router(comparisons.router, prefix="/api/v1")
app.include_router(ignored_games.router, prefix="/api/v1")
app.include_router(bulk_comparison.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "api_version": "v1",
            "mappings": "/api/v1/mappings",
            "comparisons": "/api/v1/comparisons",
            "ignored_games": "/api/v1/ignored-games",
            "bulk_comparison": "/api/v1/bulk-comparison",
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        },
    }


@app.get("/health")
async def health_check():
    """Health check with database, scheduler and source breaker status."""
    health_status = {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "components": {},
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status["components"]["database"] = {"status": "connected"}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        health_status["components"]["database"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "degraded"
    finally:
        db.close()

    from sportsrecon.core.scheduler import get_scheduler
    scheduler = get_scheduler()
    health_status["components"]["scheduler"] = {
        "status": "running" if scheduler and scheduler.running else "stopped",
    }
    metrics.update_scheduler_metrics()

    breakers = get_all_breaker_states()
    health_status["components"]["sources"] = breakers
    if any(state == "open" for state in breakers.values()):
        health_status["status"] = "degraded"

    return health_status


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("sportsrecon.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
