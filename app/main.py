"""
FastAPI application entry point.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.api import webhooks, status
from app.services.redis_client import RedisConnectionError
from app.utils.logging import setup_logging, get_logger

# Configure structured logging
setup_logging(settings.log_level)

logger = get_logger(__name__)

VERSION = "1.0.0"

# Create FastAPI application
app = FastAPI(
    title="GitHub PR Review Bot",
    description="AI code review for GitHub pull requests",
    version=VERSION
)

# Status endpoints are read by the dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy", "version": VERSION}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "GitHub PR Review Bot is running",
        "bot": settings.bot_username,
        "version": VERSION,
        "webhook": "/webhook",
        "docs": "/docs"
    }


# Include API routers
app.include_router(webhooks.router)
app.include_router(status.router)


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    logger.info(f"Starting GitHub PR Review Bot as {settings.bot_username}")

    from app.services.redis_client import get_redis_client
    redis_client = get_redis_client()
    try:
        await redis_client.initialize()
        logger.info("Redis client initialized")
    except RedisConnectionError as e:
        # Reviews still run; locks, dedup and logs fall back to degraded mode
        logger.warning(f"Redis unavailable at startup: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup services on application shutdown."""
    logger.info("Shutting down GitHub PR Review Bot")

    from app.services.review_orchestrator import get_review_orchestrator
    await get_review_orchestrator().drain()

    from app.services.redis_client import get_redis_client
    redis_client = get_redis_client()
    await redis_client.close()
    logger.info("Redis client closed")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
