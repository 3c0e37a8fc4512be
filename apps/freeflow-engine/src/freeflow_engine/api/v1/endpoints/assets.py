"""Durable asset endpoints."""

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from freeflow_engine.core.errors import PersistenceError
from freeflow_engine.core.jobs import JobScheduler
from freeflow_engine.services.storage import content_type_for

router = APIRouter()


@router.get("/{key}")
async def get_asset(key: str) -> Response:
    """Serve a persisted artifact through the configured store."""
    persistence = JobScheduler.get_instance().persistence
    if persistence is None:
        raise HTTPException(status_code=503, detail="Asset store not configured")

    try:
        data = await persistence.store.get(key)
    except PersistenceError:
        raise HTTPException(status_code=400, detail="Invalid asset path")

    if data is None:
        raise HTTPException(status_code=404, detail="Not found")

    return Response(content=data, media_type=content_type_for(key))
