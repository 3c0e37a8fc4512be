"""Main API router for v1."""

from fastapi import APIRouter

from freeflow_engine.api.v1.endpoints import assets, jobs, models, preferences, websockets

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
api_router.include_router(models.router, prefix="/models", tags=["Models"])
api_router.include_router(assets.router, prefix="/assets", tags=["Assets"])
api_router.include_router(preferences.router, prefix="/settings", tags=["Settings"])
api_router.include_router(websockets.router, tags=["Real-time"])
