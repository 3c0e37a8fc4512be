"""Asset persistence and history rehydration."""

import asyncio
import json
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import aiohttp

from freeflow_engine.adapters.spec import MediaKind
from freeflow_engine.core.config import settings
from freeflow_engine.core.errors import PersistenceError, RehydrationParseError
from freeflow_engine.services.kv_slot import HISTORY_KEY, KeyValueSlot
from freeflow_engine.services.storage import AssetStore, build_asset_filename, extension_for

logger = logging.getLogger(__name__)


def to_epoch_ms(moment: datetime) -> int:
    return round(moment.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    seconds, millis = divmod(int(value), 1000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(milliseconds=millis)


@dataclass
class StoredAssetRecord:
    """One durable history entry."""
    id: str
    model_id: str
    prompt: str
    created_at: int
    local_key: str
    local_url: str
    storage_path: str = "downloads"
    preview: Optional[str] = None
    events: List[str] = field(default_factory=list)

    @classmethod
    def from_job(cls, job: Any) -> "StoredAssetRecord":
        return cls(
            id=job.id,
            model_id=job.model_id,
            prompt=job.prompt,
            created_at=to_epoch_ms(job.created_at),
            local_key=job.local_key,
            local_url=job.local_url,
            storage_path=job.storage_path,
            preview=job.preview,
            events=list(job.events[-settings.HISTORY_EVENT_TAIL:]),
        )

    @classmethod
    def parse(cls, entry: Any) -> "StoredAssetRecord":
        """Validate one raw index entry; raises RehydrationParseError when unusable."""
        if not isinstance(entry, dict):
            raise RehydrationParseError("History entry is not an object")

        local_key = entry.get("localKey")
        local_url = entry.get("localUrl")
        if not isinstance(local_key, str) or not local_key:
            raise RehydrationParseError("History entry has no durable key")
        if not isinstance(local_url, str) or not local_url:
            raise RehydrationParseError("History entry has no asset URL")

        entry_id = entry.get("id")
        if not isinstance(entry_id, str) or not entry_id:
            entry_id = f"job_{uuid.uuid4().hex[:12]}"

        created_at = entry.get("createdAt")
        if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
            created_at = to_epoch_ms(datetime.now(timezone.utc))
        elif not math.isfinite(created_at):
            raise RehydrationParseError(f"History entry has a non-finite timestamp: {created_at!r}")
        try:
            from_epoch_ms(int(created_at))
        except (ValueError, OverflowError, OSError) as e:
            raise RehydrationParseError(f"History entry timestamp out of range: {created_at!r}") from e

        events = entry.get("events")
        events = [
            e if isinstance(e, str) else json.dumps(e)
            for e in (events if isinstance(events, list) else [])
        ][-settings.HISTORY_EVENT_TAIL:]

        def text(key: str, default: str) -> str:
            value = entry.get(key)
            return value if isinstance(value, str) else default

        preview = entry.get("preview")
        return cls(
            id=entry_id,
            model_id=text("modelId", ""),
            prompt=text("prompt", ""),
            created_at=int(created_at),
            local_key=local_key,
            local_url=local_url,
            storage_path=text("storagePath", settings.DEFAULT_SAVE_PATH),
            preview=preview if isinstance(preview, str) else None,
            events=events,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "modelId": self.model_id,
            "prompt": self.prompt,
            "createdAt": self.created_at,
            "preview": self.preview,
            "events": self.events,
            "localKey": self.local_key,
            "localUrl": self.local_url,
            "storagePath": self.storage_path,
        }


def is_persistable(job: Any) -> bool:
    """Only succeeded jobs with a confirmed durable copy enter the index."""
    return job.status == "success" and bool(job.local_key) and bool(job.local_url)


class AssetHistory:
    """Reads and writes the history index kept in a key-value slot."""

    def __init__(self, slot: KeyValueSlot, key: str = HISTORY_KEY):
        self.slot = slot
        self.key = key
        self._lock = asyncio.Lock()

    async def write_index(self, jobs: Iterable[Any]) -> int:
        """Persist the durable subset of `jobs`. Returns the number written."""
        async with self._lock:
            # Snapshot under the lock so the last writer stores the newest state
            records = [StoredAssetRecord.from_job(job).to_dict() for job in list(jobs) if is_persistable(job)]
            if not records:
                await self.slot.delete(self.key)
                return 0
            await self.slot.set(self.key, json.dumps(records))
            return len(records)

    async def rehydrate(self) -> List[StoredAssetRecord]:
        """Load valid history records; anything malformed is dropped silently."""
        try:
            raw = await self.slot.get(self.key)
        except Exception as e:
            logger.warning("History index unavailable: %s", e)
            return []
        if not raw:
            return []

        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug("History index is not valid JSON; discarding")
            data = None
        if not isinstance(data, list):
            await self._rewrite([])
            return []

        records = []
        for entry in data:
            try:
                records.append(StoredAssetRecord.parse(entry))
            except RehydrationParseError as e:
                logger.debug("Dropping history entry: %s", e)

        if len(records) != len(data):
            await self._rewrite(records)
        logger.info("Rehydrated %d of %d history entries", len(records), len(data))
        return records

    async def _rewrite(self, records: List[StoredAssetRecord]) -> None:
        async with self._lock:
            try:
                if records:
                    await self.slot.set(self.key, json.dumps([r.to_dict() for r in records]))
                else:
                    await self.slot.delete(self.key)
            except Exception as e:
                logger.warning("Could not rewrite history index: %s", e)

    async def clear(self) -> None:
        async with self._lock:
            await self.slot.delete(self.key)


class AssetPersistence:
    """Downloads a finished artifact and writes it through the durable store."""

    def __init__(self, store: AssetStore):
        self.store = store

    async def download(self, url: str) -> Tuple[bytes, Optional[str]]:
        async with aiohttp.ClientSession() as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    raise PersistenceError(f"Failed to fetch asset ({resp.status})")
                return await resp.read(), resp.headers.get("Content-Type")

    async def persist(
        self,
        job: Any,
        media_kind: MediaKind = MediaKind.VIDEO,
    ) -> Tuple[str, str]:
        """Store the job's result. Returns (durable key, access URL)."""
        if not job.result_url:
            raise PersistenceError("Job has no result URL")

        try:
            data, content_type = await self.download(job.result_url)
        except aiohttp.ClientError as e:
            raise PersistenceError(f"Failed to fetch asset: {e}") from e

        key = build_asset_filename(
            job.storage_path,
            job.model_id,
            job.created_at,
            job.id,
            extension_for(media_kind, content_type),
        )
        await self.store.put(key, data, content_type or "application/octet-stream")
        logger.info("Persisted %s (%d bytes)", key, len(data))
        return key, self.store.url_for(key)
