import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auction_house.api.v1 import admin, auctions, cron, webhooks
from auction_house.core.clock import DatabaseClock
from auction_house.core.config import settings
from auction_house.core.database import async_session_maker
from auction_house.core.errors import AuctionError
from auction_house.core.redis import close_redis
from auction_house.middleware.metrics import PrometheusMiddleware, metrics_endpoint
from auction_house.services.sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)

# Background task control
_sweep_task: asyncio.Task | None = None


async def sweep_loop(interval: int):
    """Run the expiration sweep every ``interval`` seconds.

    Only used when no external scheduler calls the sweep endpoint.
    """
    while True:
        try:
            async with async_session_maker() as db:
                sweeper = ExpirationSweeper(db, DatabaseClock(db))
                result = await sweeper.run()
                for error in result.errors:
                    logger.error(
                        f"Sweep {error.stage} failed for {error.entity_type} "
                        f"{error.entity_id}: {error.message}"
                    )

            await asyncio.sleep(interval)

        except asyncio.CancelledError:
            logger.info("Sweep loop cancelled")
            break
        except Exception as e:
            logger.error(f"Error in sweep loop: {e}")
            await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    global _sweep_task

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting application...")

    if settings.SWEEP_INTERVAL_SECONDS > 0:
        logger.info(f"Starting sweep loop every {settings.SWEEP_INTERVAL_SECONDS}s")
        _sweep_task = asyncio.create_task(sweep_loop(settings.SWEEP_INTERVAL_SECONDS))

    yield

    logger.info("Shutting down")
    if _sweep_task:
        _sweep_task.cancel()
        try:
            await _sweep_task
        except asyncio.CancelledError:
            pass
        _sweep_task = None

    await close_redis()


app = FastAPI(
    title="Auction House",
    version="1.0.0",
    description="Vehicle auction bidding and settlement engine",
    lifespan=lifespan,
)

# Prometheus Metrics Middleware (must be first to capture all requests)
app.add_middleware(PrometheusMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuctionError)
async def auction_error_handler(request: Request, exc: AuctionError) -> JSONResponse:
    """Render domain errors as ``{"detail": {"code", "message", ...}}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


# Include API routers
app.include_router(auctions.router, prefix="/api/v1/auctions", tags=["auctions"])
app.include_router(admin.router, prefix="/api/v1/admin/auctions", tags=["admin"])
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["webhooks"])
app.include_router(cron.router, prefix="/api/v1/cron", tags=["cron"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# Prometheus metrics endpoint
app.add_route("/metrics", metrics_endpoint)
