"""Application configuration."""

import os
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App info
    VERSION: str = "1.0.0"
    APP_NAME: str = "FreeFlow Engine"
    DEBUG: bool = False

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 7870
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Paths
    LIBRARY_PATH: Path = Path.home() / "FREEFLOW_LIBRARY"
    DATABASE_PATH: Path = Path.home() / "FREEFLOW_LIBRARY" / "freeflow.db"
    ASSETS_PATH: Path = Path.home() / "FREEFLOW_LIBRARY" / "out"
    CATALOG_PATH: Optional[Path] = None

    # Provider (fal.ai queue API)
    FAL_KEY: str = ""
    FAL_QUEUE_URL: str = "https://queue.fal.run"
    FAL_STORAGE_URL: str = "https://rest.alpha.fal.ai"
    POLL_INTERVAL: float = 1.5

    # Job queue
    MAX_CONCURRENT_JOBS: int = 2
    EVENT_LOG_LIMIT: int = 50

    # Asset persistence: "local", "database" or "remote"
    ASSET_STORE: str = "local"
    ASSET_REMOTE_URL: str = "http://localhost:5173"
    DEFAULT_SAVE_PATH: str = "downloads"
    HISTORY_EVENT_TAIL: int = 10

    class Config:
        env_prefix = "FREEFLOW_"
        env_file = ".env"
        case_sensitive = True

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Create directories
        self.LIBRARY_PATH.mkdir(parents=True, exist_ok=True)
        self.ASSETS_PATH.mkdir(parents=True, exist_ok=True)


# Override paths from environment
if os.environ.get("FREEFLOW_LIBRARY_PATH"):
    _library_path = Path(os.environ["FREEFLOW_LIBRARY_PATH"])
    settings = Settings(
        LIBRARY_PATH=_library_path,
        DATABASE_PATH=_library_path / "freeflow.db",
        ASSETS_PATH=_library_path / "out",
    )
else:
    settings = Settings()
