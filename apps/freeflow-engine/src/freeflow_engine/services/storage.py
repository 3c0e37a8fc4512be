"""Durable asset stores and deterministic asset filenames."""

import asyncio
import base64
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

import aiohttp
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from freeflow_engine.adapters.spec import MediaKind
from freeflow_engine.core.config import settings
from freeflow_engine.core.database import async_session_maker
from freeflow_engine.core.errors import PersistenceError
from freeflow_engine.models.asset_blob import AssetBlob

logger = logging.getLogger(__name__)

MAX_SEGMENT_LENGTH = 40

DEFAULT_EXTENSIONS = {
    MediaKind.VIDEO: "mp4",
    MediaKind.IMAGE: "png",
}

_CONTENT_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
}

_EXTENSION_CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
}


def sanitize_file_segment(value: str) -> str:
    """Lowercase, collapse anything outside [a-z0-9] to '-', trim, cap at 40 chars."""
    cleaned = re.sub(r"[^a-z0-9]+", "-", (value or "").lower())
    return cleaned.strip("-")[:MAX_SEGMENT_LENGTH]


def format_compact_timestamp(moment: datetime) -> str:
    """YYYYMMDD-HHMMSSmmm, millisecond resolution."""
    return f"{moment:%Y%m%d-%H%M%S}{moment.microsecond // 1000:03d}"


def build_asset_filename(
    storage_path: str,
    model_id: str,
    created_at: datetime,
    job_id: str,
    extension: str = "mp4",
) -> str:
    """Deterministic filename for a job's artifact."""
    base = sanitize_file_segment(storage_path or settings.DEFAULT_SAVE_PATH) or "downloads"
    model = sanitize_file_segment(model_id) or "model"
    stamp = format_compact_timestamp(created_at)
    id_segment = sanitize_file_segment(job_id)[-6:] or job_id[-6:]
    return f"{base}-{model}-{stamp}-{id_segment}.{extension}"


def extension_for(media_kind: MediaKind, content_type: Optional[str] = None) -> str:
    """Pick a file extension from the download content type, else the media kind."""
    if content_type:
        ctype = content_type.split(";")[0].strip().lower()
        ext = _CONTENT_TYPE_EXTENSIONS.get(ctype)
        if ext and ctype.split("/")[0] == media_kind.value:
            return ext
    return DEFAULT_EXTENSIONS.get(media_kind, "bin")


def content_type_for(key: str) -> str:
    return _EXTENSION_CONTENT_TYPES.get(key.rsplit(".", 1)[-1].lower(), "application/octet-stream")


def _check_key(key: str) -> None:
    if not key or ".." in key or "/" in key or "\\" in key:
        raise PersistenceError(f"Invalid asset key: {key!r}")


class AssetStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str = ...) -> None: ...

    async def get(self, key: str) -> Optional[bytes]: ...

    def url_for(self, key: str) -> str: ...


class LocalAssetStore:
    """Flat directory of asset files."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or settings.ASSETS_PATH)
        self.root.mkdir(parents=True, exist_ok=True)

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        _check_key(key)
        target = self.root / key
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, target.write_bytes, data)
        except OSError as e:
            raise PersistenceError(f"Failed to write {key}: {e}") from e

    async def get(self, key: str) -> Optional[bytes]:
        _check_key(key)
        target = self.root / key
        if not target.is_file():
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, target.read_bytes)

    def url_for(self, key: str) -> str:
        return f"/v1/assets/{quote(key)}"


class DatabaseAssetStore:
    """Per-key binary rows in the `asset_blobs` table."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker or async_session_maker

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        _check_key(key)
        try:
            async with self._session_maker() as db:
                await db.merge(AssetBlob(key=key, data=data, size=len(data), content_type=content_type))
                await db.commit()
        except Exception as e:
            raise PersistenceError(f"Failed to store {key}: {e}") from e

    async def get(self, key: str) -> Optional[bytes]:
        async with self._session_maker() as db:
            blob = await db.get(AssetBlob, key)
            return blob.data if blob else None

    def url_for(self, key: str) -> str:
        return f"/v1/assets/{quote(key)}"


class RemoteAssetStore:
    """Flat content store behind a write/read HTTP endpoint pair."""

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or settings.ASSET_REMOTE_URL).rstrip("/")

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        _check_key(key)
        body = {"name": key, "data": base64.b64encode(data).decode("ascii")}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(f"{self.base_url}/api/assets", json=body) as resp:
                    if resp.status >= 400:
                        detail = await resp.text()
                        raise PersistenceError(f"Failed to persist asset ({resp.status}): {detail}")
        except aiohttp.ClientError as e:
            raise PersistenceError(f"Failed to persist asset: {e}") from e

    async def get(self, key: str) -> Optional[bytes]:
        async with aiohttp.ClientSession() as session:
            async with session.get(self.url_for(key)) as resp:
                if resp.status == 404:
                    return None
                resp.raise_for_status()
                return await resp.read()

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/assets/{quote(key)}"


def create_asset_store(kind: Optional[str] = None) -> AssetStore:
    """Build the store selected by FREEFLOW_ASSET_STORE."""
    kind = (kind or settings.ASSET_STORE).lower()
    if kind == "database":
        return DatabaseAssetStore()
    if kind == "remote":
        return RemoteAssetStore()
    if kind != "local":
        logger.warning("Unknown asset store %r, falling back to local", kind)
    return LocalAssetStore()
