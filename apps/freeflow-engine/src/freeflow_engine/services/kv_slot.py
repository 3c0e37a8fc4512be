"""Small durable string slots: history index, API key, save path."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from freeflow_engine.core.config import settings
from freeflow_engine.core.database import async_session_maker
from freeflow_engine.models.kv_slot import KeyValueRecord

logger = logging.getLogger(__name__)

HISTORY_KEY = "video-job-history"
FAL_KEY_SLOT = "FAL_KEY"
SAVE_PATH_SLOT = "FREEFLOW_SAVE_PATH"


class KeyValueSlot:
    """Named string values stored in the `kv_slots` table."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker or async_session_maker

    async def get(self, key: str) -> Optional[str]:
        async with self._session_maker() as db:
            record = await db.get(KeyValueRecord, key)
            return record.value if record else None

    async def set(self, key: str, value: str) -> None:
        async with self._session_maker() as db:
            now = datetime.now(timezone.utc)
            stmt = insert(KeyValueRecord).values(key=key, value=value, updated_at=now)
            stmt = stmt.on_conflict_do_update(
                index_elements=[KeyValueRecord.key],
                set_={"value": value, "updated_at": now},
            )
            await db.execute(stmt)
            await db.commit()

    async def delete(self, key: str) -> None:
        async with self._session_maker() as db:
            await db.execute(delete(KeyValueRecord).where(KeyValueRecord.key == key))
            await db.commit()


class Preferences:
    """User settings kept in key-value slots."""

    def __init__(self, slot: KeyValueSlot):
        self.slot = slot

    async def get_fal_key(self) -> str:
        return (await self.slot.get(FAL_KEY_SLOT)) or settings.FAL_KEY

    async def set_fal_key(self, value: str) -> str:
        trimmed = (value or "").strip()
        if not trimmed:
            await self.slot.delete(FAL_KEY_SLOT)
            logger.info("Cleared stored fal credential")
            return ""
        await self.slot.set(FAL_KEY_SLOT, trimmed)
        logger.info("Stored fal credential")
        return trimmed

    async def get_save_path(self) -> str:
        return (await self.slot.get(SAVE_PATH_SLOT)) or settings.DEFAULT_SAVE_PATH

    async def set_save_path(self, value: str) -> str:
        path = (value or "").strip() or settings.DEFAULT_SAVE_PATH
        await self.slot.set(SAVE_PATH_SLOT, path)
        return path
