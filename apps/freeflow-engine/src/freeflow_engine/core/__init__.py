"""Core components for FreeFlow Engine."""

from freeflow_engine.core.config import settings
from freeflow_engine.core.database import async_session_maker, init_db

__all__ = ["settings", "async_session_maker", "init_db"]
