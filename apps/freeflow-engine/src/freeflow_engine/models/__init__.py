"""SQLAlchemy models for FreeFlow Engine."""

from freeflow_engine.models.asset_blob import AssetBlob
from freeflow_engine.models.kv_slot import KeyValueRecord

__all__ = [
    "AssetBlob",
    "KeyValueRecord",
]
