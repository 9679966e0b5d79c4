"""
Sales Coach
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from contextlib import asynccontextmanager

from salescoach.config import get_settings
from salescoach.utils.logger import log
from salescoach import __version__

# Import routers
from salescoach.api import health, tenants, training, insights, messages, reviews, cron, schedules, webhook

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    # Initialize database
    try:
        from salescoach.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    # Start the scheduler for coaching messages and training
    if settings.enable_scheduler:
        try:
            from salescoach.scheduler import start_scheduler
            start_scheduler()
            log.info("Scheduler started successfully")
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    try:
        from salescoach.scheduler import stop_scheduler
        stop_scheduler()
    except Exception as e:
        log.error(f"Scheduler shutdown error: {str(e)}")
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Sales coaching assistant

    - Trains per-seller insights (goal gap, projection, ranking, tips) from imported sales
    - Generates morning, midday and evening WhatsApp messages per seller
    - Queues messages for human review (approve, edit, reject) before delivery
    - Answers sellers' WhatsApp questions from the trained insights
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Gzip compression
app.add_middleware(GZipMiddleware, minimum_size=500)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(tenants.router)
app.include_router(training.router)
app.include_router(insights.router)
app.include_router(messages.router)
app.include_router(reviews.router)
app.include_router(cron.router)
app.include_router(schedules.router)
app.include_router(webhook.router)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "app": settings.app_name,
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "salescoach.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
