"""
Prize Competition API - Main Application Entry Point

Ticket sales for prize draws:
- Oversell-proof ticket reservation (compare-and-set per ticket number)
- Time-boxed reservations in Redis with a background expiry sweep
- Bonus tickets by purchase tier, orders and payment confirmation
- Structured logging with request correlation, Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from prizedraw.core.config import get_settings
from prizedraw.core.logging import setup_logging, get_logger
from prizedraw.core.metrics import metrics_endpoint
from prizedraw.api.router import api_router
from prizedraw.api.middleware import RequestLoggingMiddleware
from prizedraw.api.errors import register_exception_handlers
from prizedraw.db.session import AsyncSessionLocal
from prizedraw.services.allocation_service import get_allocator
from prizedraw.services.cache_service import get_redis, close_redis, get_cache_stats
from prizedraw.services.expiry_sweeper import ReservationSweeper

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        reservation_store=settings.RESERVATION_STORE,
        reservation_ttl_seconds=settings.RESERVATION_TTL_SECONDS,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache or shared reservation store")

    sweeper = None
    if settings.EXPIRY_SWEEP_ENABLED:
        sweeper = ReservationSweeper(
            AsyncSessionLocal,
            get_allocator().store,
            interval=settings.EXPIRY_SWEEP_INTERVAL_SECONDS,
        )
        sweeper.start()
    app.state.sweeper = sweeper

    yield

    if sweeper is not None:
        await sweeper.stop()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Prize competition ticket sales with oversell-proof reservations",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    sweeper = getattr(app.state, "sweeper", None)
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
        "expiry_sweeper": "running" if sweeper is not None and sweeper.running else "stopped",
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
