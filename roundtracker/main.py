"""
FastAPI application entry point for Round Tracker API.
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roundtracker import __version__
from roundtracker.config import settings
from roundtracker.database import init_db

# Import routers
from roundtracker.routers import rounds

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Round Tracker API",
    description="API for reconstructed game rounds and round replays",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    logger.info("Starting Round Tracker API...")

    # Create database tables if they don't exist
    try:
        init_db()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down Round Tracker API...")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "message": "Round Tracker API is running",
        "version": __version__,
    }


@app.get("/health")
async def health_check():
    """Detailed health check endpoint."""
    return {
        "status": "healthy",
        "detection_strategy": settings.ROUND_DETECTION_STRATEGY,
    }


# Include routers
app.include_router(rounds.router, prefix="/api/rounds", tags=["Rounds"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
