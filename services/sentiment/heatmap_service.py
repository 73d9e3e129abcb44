# services/sentiment/heatmap_service.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from config.heatmap_settings import (
    CACHE_LOCAL_TTL_SEC,
    HEATMAP_CACHE_BACKEND,
    HEATMAP_CACHE_TTL_SEC,
    HEATMAP_MARKET_TZ,
    REDIS_PREFIX,
    REDIS_URL,
    SCORE_CACHE_TTL_SEC,
)
from schemas.sentiment_heatmap import HeatmapFilters, HeatmapResult, OptionsContract, SentimentScore
from services.cache.score_cache import ScoreCache
from services.cache.ttl_store import MemoryTTLStore, RedisTTLStore, TTLStore
from services.clock import Clock, SystemClock, market_timezone
from services.sentiment.cache_keys import heatmap_cache_key
from services.sentiment.errors import CacheStoreUnavailable, ProviderUnavailable
from services.sentiment.filter_pipeline import apply_filters, restrict_to_underlyings
from services.sentiment.heatmap_aggregator import aggregate
from services.sentiment.metrics import (
    CACHE_SWEPT_ENTRIES,
    HEATMAP_BUILD_DURATION,
    HEATMAP_CACHE_LOOKUPS,
    PROVIDER_FAILURES,
)
from services.sentiment.provider import SentimentScoreProvider

logger = logging.getLogger(__name__)


class SentimentHeatmapService:
    """
    Entry point for heatmap requests.

    Holds no request state of its own: the two caches are the only shared
    mutable state, and every result it builds is a fresh immutable object.
    Concurrent misses on the same key each compute and each write; the
    writes are equivalent, so the last one simply wins.
    """

    def __init__(
        self,
        *,
        provider: SentimentScoreProvider,
        score_cache: ScoreCache,
        result_store: TTLStore,
        clock: Optional[Clock] = None,
        result_ttl_seconds: int = HEATMAP_CACHE_TTL_SEC,
    ) -> None:
        self.provider = provider
        self.score_cache = score_cache
        self.result_store = result_store
        self.clock = clock or SystemClock()
        self.result_ttl_seconds = result_ttl_seconds

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_heatmap(
        self,
        contracts: Sequence[OptionsContract],
        filters: Optional[HeatmapFilters] = None,
        *,
        force_refresh: bool = False,
    ) -> HeatmapResult:
        filters = filters or HeatmapFilters()
        cache_key = heatmap_cache_key(filters, contracts)

        if not force_refresh:
            cached = self._read_cached(cache_key)
            if cached is not None:
                logger.info("Heatmap cache hit key=%s", cache_key)
                return cached

        logger.info("Computing heatmap key=%s contracts=%d", cache_key, len(contracts))
        with HEATMAP_BUILD_DURATION.time():
            result = await self._compute(contracts, filters)
        self._write_cached(cache_key, result)
        return result

    def sweep_expired(self) -> int:
        """Delete expired result and score entries. Safe to run alongside reads."""
        removed = 0
        stores: List[TTLStore] = [self.result_store]
        if self.score_cache.store is not self.result_store:
            stores.append(self.score_cache.store)
        for store in stores:
            try:
                removed += store.sweep_expired()
            except CacheStoreUnavailable as e:
                logger.warning("Sweep skipped for %s store: %s", e.backend, e.message)
        CACHE_SWEPT_ENTRIES.inc(removed)
        logger.info("Cache sweep removed %d expired entries", removed)
        return removed

    def invalidate_scores(self, underlyings: Iterable[str]) -> int:
        removed = self.score_cache.invalidate(underlyings)
        logger.info("Invalidated %d cached scores", removed)
        return removed

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _compute(self, contracts: Sequence[OptionsContract], filters: HeatmapFilters) -> HeatmapResult:
        in_scope = restrict_to_underlyings(contracts, filters.underlyings)
        scores = await self._resolve_scores({c.underlying for c in in_scope})
        cells = apply_filters(in_scope, scores, filters)
        result = aggregate(
            cells,
            today=self.clock.today(),
            computed_at=self.clock.now(),
            expiry_bucket=filters.expiry_bucket,
        )
        logger.info(
            "Heatmap built rows=%d cells=%d of %d contracts",
            len(result.rows), result.total_cells, len(in_scope),
        )
        return result

    async def _resolve_scores(self, underlyings: set) -> Dict[str, SentimentScore]:
        if not underlyings:
            return {}

        scores = self.score_cache.get(underlyings)
        missing = underlyings - scores.keys()
        if not missing:
            return scores

        try:
            fresh = await self.provider.compute_for(missing)
        except ProviderUnavailable as e:
            PROVIDER_FAILURES.labels(source=self.provider.source_name).inc()
            logger.warning(
                "Sentiment provider %s unavailable, %d underlyings use default scores: %s",
                e.source_name or self.provider.source_name, len(missing), e.message,
            )
            return scores
        except Exception:
            PROVIDER_FAILURES.labels(source=self.provider.source_name).inc()
            logger.exception(
                "Sentiment provider %s failed, %d underlyings use default scores",
                self.provider.source_name, len(missing),
            )
            return scores

        fresh = [s for s in fresh if s.underlying in missing]
        self.score_cache.put(fresh)
        scores.update({s.underlying: s for s in fresh})
        return scores

    # ------------------------------------------------------------------
    # Result cache
    # ------------------------------------------------------------------

    def _read_cached(self, cache_key: str) -> Optional[HeatmapResult]:
        try:
            payload = self.result_store.get(cache_key)
        except CacheStoreUnavailable as e:
            HEATMAP_CACHE_LOOKUPS.labels(outcome="bypass").inc()
            logger.warning("Heatmap cache read bypassed (%s): %s", e.backend, e.message)
            return None
        if payload is None:
            HEATMAP_CACHE_LOOKUPS.labels(outcome="miss").inc()
            return None
        try:
            cached = HeatmapResult.model_validate(payload)
        except ValidationError:
            HEATMAP_CACHE_LOOKUPS.labels(outcome="miss").inc()
            logger.warning("Discarding malformed cached heatmap key=%s", cache_key)
            return None
        HEATMAP_CACHE_LOOKUPS.labels(outcome="hit").inc()
        return cached

    def _write_cached(self, cache_key: str, result: HeatmapResult) -> None:
        try:
            self.result_store.set(cache_key, result.model_dump(mode="json"), self.result_ttl_seconds)
        except CacheStoreUnavailable as e:
            logger.warning("Heatmap cache write skipped (%s): %s", e.backend, e.message)


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------

def build_store(backend: str, clock: Clock) -> TTLStore:
    if backend == "redis":
        return RedisTTLStore(
            url=REDIS_URL,
            prefix=REDIS_PREFIX,
            local=MemoryTTLStore(clock),
            local_ttl_seconds=CACHE_LOCAL_TTL_SEC,
        )
    if backend == "sql":
        from database import SessionLocal
        from services.cache.sql_store import SqlTTLStore

        return SqlTTLStore(SessionLocal, clock)
    if backend != "memory":
        logger.warning("Unknown HEATMAP_CACHE_BACKEND=%r, using memory", backend)
    return MemoryTTLStore(clock)


def build_heatmap_service(backend: str = HEATMAP_CACHE_BACKEND) -> SentimentHeatmapService:
    from database import SessionLocal
    from services.sentiment.provider import FinnhubSentimentProvider, SqlScoreHistory

    clock = SystemClock(market_timezone(HEATMAP_MARKET_TZ))
    store = build_store(backend, clock)
    provider = FinnhubSentimentProvider(history=SqlScoreHistory(SessionLocal), clock=clock)
    logger.info("Heatmap service wired: backend=%s provider=%s", store.name, provider.source_name)
    return SentimentHeatmapService(
        provider=provider,
        score_cache=ScoreCache(store, ttl_seconds=SCORE_CACHE_TTL_SEC, clock=clock),
        result_store=store,
        clock=clock,
    )


@lru_cache(maxsize=1)
def get_heatmap_service() -> SentimentHeatmapService:
    return build_heatmap_service()
