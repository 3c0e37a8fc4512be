"""Asset blob model - per-key binary store for generated media."""

from datetime import datetime, timezone

from sqlalchemy import String, Integer, LargeBinary, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from freeflow_engine.core.database import Base


class AssetBlob(Base):
    """Durable copy of one generated artifact, keyed by its filename."""

    __tablename__ = "asset_blobs"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    content_type: Mapped[str] = mapped_column(String(100), default="application/octet-stream")
    size: Mapped[int] = mapped_column(Integer, default=0)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc)
    )
