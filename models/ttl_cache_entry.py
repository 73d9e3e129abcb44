# models/ttl_cache_entry.py
from __future__ import annotations

from datetime import datetime
from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TTLCacheEntry(Base):
    """Opaque key -> JSON payload with an absolute expiry. Backs the SQL TTL store."""

    __tablename__ = "ttl_cache_entries"

    cache_key: Mapped[str] = mapped_column(String(512), primary_key=True)
    payload: Mapped[dict] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
