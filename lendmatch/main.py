"""
LendMatch — FastAPI application entry point.

Configures the app, middleware, and registers the API routers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lendmatch.api import matching
from lendmatch.config import settings

logger = logging.getLogger(__name__)


async def _run_matching_on_startup() -> None:
    from lendmatch.matching_engine.engine import matching_engine

    report = await matching_engine.run_matching()
    logger.info(
        "Start-up loan matching run %s: %d matches, %d errors",
        report.run_id, report.matched_pairs, len(report.errors),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup: initialize connections
    from lendmatch.database import engine
    from lendmatch.redis_client import redis

    startup_run = None
    if settings.LOAN_MATCHER_RUN_ON_INIT:
        logger.info("Running loan matcher on start-up")
        startup_run = asyncio.create_task(_run_matching_on_startup())

    yield

    # Shutdown: finish the start-up run, then close connections
    if startup_run is not None and not startup_run.done():
        await startup_run
    await engine.dispose()
    await redis.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Loan matching and origination engine for a collateralised lending platform.",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Routers ---
app.include_router(matching.router, prefix="/api/v1/matching", tags=["Matching"])


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers and monitoring."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": "0.1.0",
    }
