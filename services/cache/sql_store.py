# services/cache/sql_store.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Dict, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.ttl_cache_entry import TTLCacheEntry
from services.cache.ttl_store import JsonValue, TTLStore, _norm_key
from services.clock import Clock, SystemClock
from services.sentiment.errors import CacheStoreUnavailable

logger = logging.getLogger(__name__)


class SqlTTLStore(TTLStore):
    """TTL store persisted in `ttl_cache_entries`. Survives restarts; shared by every node on the DB."""

    name = "sql"

    def __init__(self, session_factory: Callable[[], Session], clock: Optional[Clock] = None) -> None:
        self.session_factory = session_factory
        self.clock = clock or SystemClock()

    def get_many(self, keys: Iterable[str]) -> Dict[str, JsonValue]:
        wanted = sorted({k for k in (_norm_key(key) for key in keys) if k})
        if not wanted:
            return {}

        now = self.clock.now()
        db = self.session_factory()
        try:
            rows = db.execute(
                select(TTLCacheEntry.cache_key, TTLCacheEntry.payload).where(
                    TTLCacheEntry.cache_key.in_(wanted),
                    TTLCacheEntry.expires_at > now,
                )
            ).all()
            return {key: payload for key, payload in rows}
        except SQLAlchemyError as e:
            raise CacheStoreUnavailable(f"cache read failed: {e}", backend=self.name) from e
        finally:
            db.close()

    def set_many(self, items: Dict[str, JsonValue], ttl_seconds: int) -> None:
        clean = {_norm_key(k): v for k, v in items.items() if _norm_key(k)}
        if not clean or ttl_seconds <= 0:
            return

        expires_at = self.clock.now() + timedelta(seconds=ttl_seconds)
        db = self.session_factory()
        try:
            for key, payload in clean.items():
                # merge = upsert on the primary key
                db.merge(TTLCacheEntry(cache_key=key, payload=payload, expires_at=expires_at))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheStoreUnavailable(f"cache write failed: {e}", backend=self.name) from e
        finally:
            db.close()

    def delete(self, keys: Iterable[str]) -> int:
        clean = [k for k in (_norm_key(key) for key in keys) if k]
        if not clean:
            return 0
        return self._delete_where(TTLCacheEntry.cache_key.in_(clean))

    def sweep_expired(self) -> int:
        removed = self._delete_where(TTLCacheEntry.expires_at <= self.clock.now())
        if removed:
            logger.info("Swept %d expired cache rows", removed)
        return removed

    def _delete_where(self, clause) -> int:
        db = self.session_factory()
        try:
            result = db.execute(delete(TTLCacheEntry).where(clause))
            db.commit()
            return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheStoreUnavailable(f"cache delete failed: {e}", backend=self.name) from e
        finally:
            db.close()
