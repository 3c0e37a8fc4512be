"""FreeFlow Engine - Main FastAPI Application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from freeflow_engine.api.v1.router import api_router
from freeflow_engine.core.config import settings
from freeflow_engine.core.database import init_db, close_db
from freeflow_engine.core.jobs import JobScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting FreeFlow Engine v%s", settings.VERSION)

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    scheduler = JobScheduler.get_instance()

    # Restore the stored credential before any job can run
    from freeflow_engine.services.kv_slot import KeyValueSlot, Preferences
    fal_key = await Preferences(KeyValueSlot()).get_fal_key()
    if fal_key and hasattr(scheduler.client, "configure"):
        scheduler.client.configure(fal_key)

    # Register WebSocket listener
    from freeflow_engine.api.v1.endpoints.websockets import feed, job_update_listener
    scheduler.register_global_listener(job_update_listener)

    restored = await scheduler.rehydrate()
    logger.info("Job scheduler ready (%d models, %d history entries, max %d concurrent)",
                len(scheduler.registry), restored, scheduler.max_concurrent)

    yield

    # Cleanup
    logger.info("Shutting down FreeFlow Engine...")
    await scheduler.stop()
    await feed.close()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="FreeFlow Engine",
        description="Generative media job orchestration backend",
        version=settings.VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        scheduler = JobScheduler.get_instance()
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "jobs": scheduler.stats(),
            "running": scheduler.running_count,
            "maxConcurrent": scheduler.max_concurrent,
            "assetStore": settings.ASSET_STORE,
        }

    # Include API router
    app.include_router(api_router, prefix="/v1")

    return app


# Create app instance
app = create_app()


def main():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "freeflow_engine.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
    )


if __name__ == "__main__":
    main()
