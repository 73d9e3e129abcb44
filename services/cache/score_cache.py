# services/cache/score_cache.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from config.heatmap_settings import SCORE_CACHE_TTL_SEC
from schemas.sentiment_heatmap import SentimentScore
from services.cache.ttl_store import TTLStore
from services.clock import Clock, SystemClock
from services.sentiment.cache_keys import score_cache_key
from services.sentiment.errors import CacheStoreUnavailable

logger = logging.getLogger(__name__)


class ScoreCache:
    """
    Per-underlying sentiment scores with a freshness window.

    Never raises for store trouble: reads degrade to "nothing cached" and
    writes are skipped, so callers simply recompute.
    """

    def __init__(
        self,
        store: TTLStore,
        *,
        ttl_seconds: int = SCORE_CACHE_TTL_SEC,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock or SystemClock()

    def get(self, underlyings: Iterable[str]) -> Dict[str, SentimentScore]:
        keys = {score_cache_key(u): u.strip().upper() for u in underlyings if u and u.strip()}
        if not keys:
            return {}

        try:
            payloads = self.store.get_many(keys.keys())
        except CacheStoreUnavailable as e:
            logger.warning("Score cache read bypassed (%s): %s", e.backend, e.message)
            return {}

        oldest_ok = self.clock.now() - timedelta(seconds=self.ttl_seconds)
        out: Dict[str, SentimentScore] = {}
        for key, payload in payloads.items():
            try:
                score = SentimentScore.model_validate(payload)
            except ValidationError:
                logger.warning("Ignoring malformed cached score key=%s", key)
                continue
            # Stores with their own (longer) expiry still honour our window
            if score.computed_at < oldest_ok:
                continue
            out[score.underlying] = score
        return out

    def put(self, scores: Iterable[SentimentScore]) -> None:
        items = {score_cache_key(s.underlying): s.model_dump(mode="json") for s in scores}
        if not items:
            return
        try:
            self.store.set_many(items, self.ttl_seconds)
        except CacheStoreUnavailable as e:
            logger.warning("Score cache write skipped (%s): %s", e.backend, e.message)

    def invalidate(self, underlyings: Iterable[str]) -> int:
        keys: List[str] = [score_cache_key(u) for u in underlyings if u and u.strip()]
        if not keys:
            return 0
        try:
            return self.store.delete(keys)
        except CacheStoreUnavailable as e:
            logger.warning("Score cache invalidation failed (%s): %s", e.backend, e.message)
            return 0
