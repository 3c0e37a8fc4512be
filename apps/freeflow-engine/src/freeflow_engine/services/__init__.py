"""FreeFlow Engine services."""

from freeflow_engine.services.fal import FalClient
from freeflow_engine.services.history import AssetHistory, AssetPersistence
from freeflow_engine.services.kv_slot import KeyValueSlot, Preferences
from freeflow_engine.services.prepare import PreparePipeline
from freeflow_engine.services.storage import create_asset_store

__all__ = [
    "FalClient",
    "AssetHistory",
    "AssetPersistence",
    "KeyValueSlot",
    "Preferences",
    "PreparePipeline",
    "create_asset_store",
]
