"""
King of the Court API

FastAPI server for 1v1 invitations, match lifecycle, rankings and venue presence.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from kingofcourt.api.routes import router, limiter as routes_limiter
from kingofcourt.database import db
from kingofcourt.services.presence_cleanup_service import get_presence_cleanup_service

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting up King of the Court API...")

    # Initialize database (create tables if they don't exist)
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    # Start presence cleanup worker (delete stale check-ins)
    try:
        cleanup_service = get_presence_cleanup_service()
        cleanup_service.start()
        logger.info("Presence cleanup worker started")
    except Exception as e:
        logger.error(f"Failed to start presence cleanup worker: {e}", exc_info=True)

    yield  # App is running

    # Shutdown
    logger.info("Shutting down King of the Court API...")

    try:
        cleanup_service = get_presence_cleanup_service()
        cleanup_service.stop()
        logger.info("Presence cleanup worker stopped")
    except Exception as e:
        logger.error(f"Error stopping presence cleanup worker: {e}", exc_info=True)

    await db.engine.dispose()


app = FastAPI(
    title="King of the Court API",
    description="1v1 invitations, match lifecycle, rankings and venue presence",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware; origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


def run():
    """Serve the API with uvicorn (HOST/PORT from the environment)."""
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    run()
