"""User preference endpoints: provider credential and save path."""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from freeflow_engine.core.jobs import JobScheduler
from freeflow_engine.services.kv_slot import KeyValueSlot, Preferences

router = APIRouter()


class UpdatePreferencesRequest(BaseModel):
    fal_key: Optional[str] = None
    save_path: Optional[str] = None


async def _snapshot(prefs: Preferences) -> dict:
    return {
        "hasFalKey": bool(await prefs.get_fal_key()),
        "savePath": await prefs.get_save_path(),
    }


@router.get("")
async def get_preferences() -> dict:
    """Current preferences (the key itself is never returned)."""
    return {"success": True, "data": await _snapshot(Preferences(KeyValueSlot()))}


@router.put("")
async def update_preferences(request: UpdatePreferencesRequest) -> dict:
    """Update the stored credential and/or save path."""
    prefs = Preferences(KeyValueSlot())

    if request.fal_key is not None:
        await prefs.set_fal_key(request.fal_key)
        client = JobScheduler.get_instance().client
        if hasattr(client, "configure"):
            client.configure(await prefs.get_fal_key())

    if request.save_path is not None:
        await prefs.set_save_path(request.save_path)

    return {"success": True, "data": await _snapshot(prefs)}
