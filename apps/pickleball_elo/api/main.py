"""
Pickleball ELO API Server

FastAPI server exposing game recording, season replay and leaderboards.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from pickleball_elo.api.routes import router, limiter as routes_limiter
from pickleball_elo.database import db
from pickleball_elo.database.init_defaults import init_defaults
from pickleball_elo.services import data_service
from pickleball_elo.services.replay_queue import get_replay_queue

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
# Note: Database setting will be checked after database initialization
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def apply_log_level_setting() -> None:
    """Override the root log level from the 'log_level' setting, if present."""
    async with db.AsyncSessionLocal() as session:
        log_level_setting = await data_service.get_setting(session, "log_level")
    if log_level_setting:
        log_level_name = log_level_setting.upper()
        logging.getLogger().setLevel(getattr(logging, log_level_name, logging.INFO))
        logger.info(f"Log level set from database: {log_level_name}")
    else:
        logger.info(f"Log level set from environment: {log_level}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Pickleball ELO API...")

    # Fallback for tables that are not in migrations yet
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    try:
        await init_defaults()
        await apply_log_level_setting()
    except Exception as e:
        logger.warning(f"Could not load settings from database, using environment: {e}")

    # Register the replay callback before starting the worker
    queue = get_replay_queue()
    queue.timeout_seconds = data_service.REPLAY_TIMEOUT_SECONDS
    queue.register_replay_callback(data_service.replay_season_async)
    try:
        queue.start_background_worker()
        logger.info("✓ Replay queue worker started")
    except Exception as e:
        logger.error(f"Failed to start replay queue worker: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down Pickleball ELO API...")
    try:
        queue.stop_background_worker()
        logger.info("✓ Replay queue worker stopped")
    except Exception as e:
        logger.error(f"Error stopping replay queue worker: {e}", exc_info=True)


app = FastAPI(
    title="Pickleball ELO API",
    description="API for recording pickleball doubles games and maintaining season ELO ratings",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware, origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
