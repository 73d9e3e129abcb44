# services/cache/ttl_store.py
"""
Key -> JSON TTL stores.

Every store answers only with fresh entries: an expired entry reads exactly
like a missing one, whether or not a sweep has physically removed it yet.
Backend failures are raised as CacheStoreUnavailable; callers decide whether
to bypass.
"""
from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union, cast

import redis

from services.clock import Clock, SystemClock
from services.sentiment.errors import CacheStoreUnavailable

logger = logging.getLogger(__name__)

# -------------------------
# Types
# -------------------------
JsonInput = Union[str, bytes, bytearray]
JsonValue = Union[Dict[str, Any], List[Any], str, int, float, bool, None]


def _norm_key(key: str) -> str:
    return (key or "").strip()


def _as_json_input(v: Any) -> Optional[JsonInput]:
    if isinstance(v, (str, bytes, bytearray)):
        return v
    return None


def _dumps(payload: JsonValue) -> str:
    return json.dumps(payload, separators=(",", ":"))


class TTLStore(ABC):
    name = "ttl"

    @abstractmethod
    def get_many(self, keys: Iterable[str]) -> Dict[str, JsonValue]:
        """Fresh hits only, keyed by the normalised key. Misses are absent."""

    @abstractmethod
    def set_many(self, items: Dict[str, JsonValue], ttl_seconds: int) -> None:
        ...

    @abstractmethod
    def delete(self, keys: Iterable[str]) -> int:
        ...

    @abstractmethod
    def sweep_expired(self) -> int:
        """Physically delete expired entries; returns how many went."""

    def get(self, key: str) -> Optional[JsonValue]:
        k = _norm_key(key)
        if not k:
            return None
        return self.get_many([k]).get(k)

    def set(self, key: str, payload: JsonValue, ttl_seconds: int) -> None:
        k = _norm_key(key)
        if not k:
            return
        self.set_many({k: payload}, ttl_seconds)


class MemoryTTLStore(TTLStore):
    """Process-local store: key -> (expires_at_epoch, payload)."""

    name = "memory"

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()
        self._entries: Dict[str, Tuple[float, JsonValue]] = {}
        self._lock = threading.Lock()

    def _now(self) -> float:
        return self.clock.now().timestamp()

    def get_many(self, keys: Iterable[str]) -> Dict[str, JsonValue]:
        now = self._now()
        out: Dict[str, JsonValue] = {}
        with self._lock:
            for key in keys:
                k = _norm_key(key)
                hit = self._entries.get(k) if k else None
                if not hit:
                    continue
                expires_at, payload = hit
                # Expiry is checked on read; the sweep only reclaims memory.
                if now < expires_at:
                    out[k] = payload
        return out

    def set_many(self, items: Dict[str, JsonValue], ttl_seconds: int) -> None:
        if not items or ttl_seconds <= 0:
            return
        expires_at = self._now() + ttl_seconds
        with self._lock:
            for key, payload in items.items():
                k = _norm_key(key)
                if k:
                    self._entries[k] = (expires_at, payload)

    def delete(self, keys: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._entries.pop(_norm_key(key), None) is not None:
                    removed += 1
        return removed

    def sweep_expired(self) -> int:
        now = self._now()
        with self._lock:
            expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisTTLStore(TTLStore):
    """
    Read-through / write-through store:
      1) optional local memory L1 (short TTL)
      2) redis L2 (shared across instances, native expiry)
    """

    name = "redis"

    def __init__(
        self,
        client: Optional["redis.Redis"] = None,
        *,
        url: Optional[str] = None,
        prefix: str = "sentimentheatmap:",
        local: Optional[MemoryTTLStore] = None,
        local_ttl_seconds: int = 60,
    ) -> None:
        self._client = client
        self._url = url
        self.prefix = prefix
        self.local = local
        self.local_ttl_seconds = local_ttl_seconds

    def _redis(self) -> "redis.Redis":
        """Lazy init redis client (sync)."""
        if self._client is not None:
            return self._client
        if not self._url:
            raise CacheStoreUnavailable("REDIS_URL is not configured", backend=self.name)
        try:
            self._client = redis.from_url(
                self._url,
                decode_responses=True,  # returns str for GET/MGET
                socket_timeout=2,
                socket_connect_timeout=2,
            )
        except (redis.RedisError, ValueError) as e:
            raise CacheStoreUnavailable(f"redis client init failed: {e}", backend=self.name) from e
        return self._client

    def _redis_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get_many(self, keys: Iterable[str]) -> Dict[str, JsonValue]:
        wanted = [k for k in (_norm_key(key) for key in keys) if k]
        out: Dict[str, JsonValue] = {}

        # L1 pass
        if self.local is not None:
            out.update(self.local.get_many(wanted))
        misses = [k for k in wanted if k not in out]
        if not misses:
            return out

        # L2
        r = self._redis()
        try:
            raws = cast(List[Any], r.mget([self._redis_key(k) for k in misses]))
        except redis.RedisError as e:
            raise CacheStoreUnavailable(f"redis MGET failed: {e}", backend=self.name) from e

        fetched: Dict[str, JsonValue] = {}
        for k, raw_any in zip(misses, raws):
            raw = _as_json_input(raw_any)
            if raw is None:
                continue
            try:
                fetched[k] = json.loads(raw)
            except ValueError:
                logger.warning("Dropping undecodable redis payload key=%s", k)

        if fetched and self.local is not None:
            self.local.set_many(fetched, self.local_ttl_seconds)
        out.update(fetched)
        return out

    def set_many(self, items: Dict[str, JsonValue], ttl_seconds: int) -> None:
        clean = {_norm_key(k): v for k, v in items.items() if _norm_key(k)}
        if not clean or ttl_seconds <= 0:
            return

        # L1
        if self.local is not None:
            self.local.set_many(clean, min(self.local_ttl_seconds, ttl_seconds))

        # L2
        r = self._redis()
        try:
            pipe = r.pipeline(transaction=False)
            for k, payload in clean.items():
                pipe.setex(self._redis_key(k), int(ttl_seconds), _dumps(payload))
            pipe.execute()
        except redis.RedisError as e:
            raise CacheStoreUnavailable(f"redis SETEX failed: {e}", backend=self.name) from e

    def delete(self, keys: Iterable[str]) -> int:
        clean = [k for k in (_norm_key(key) for key in keys) if k]
        if not clean:
            return 0
        if self.local is not None:
            self.local.delete(clean)
        try:
            return int(self._redis().delete(*[self._redis_key(k) for k in clean]))
        except redis.RedisError as e:
            raise CacheStoreUnavailable(f"redis DEL failed: {e}", backend=self.name) from e

    def sweep_expired(self) -> int:
        # Redis expires keys itself; only the L1 copy needs reclaiming.
        return self.local.sweep_expired() if self.local is not None else 0
