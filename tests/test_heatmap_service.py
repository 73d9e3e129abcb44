import asyncio
import os
import unittest
from datetime import date, datetime, timezone
from unittest.mock import patch

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import httpx

from schemas.sentiment_heatmap import HeatmapFilters, OptionsContract, SentimentScore
from services.cache.score_cache import ScoreCache
from services.cache.ttl_store import MemoryTTLStore, TTLStore
from services.clock import FixedClock
from services.sentiment.errors import CacheStoreUnavailable, ProviderUnavailable
from services.sentiment.heatmap_service import SentimentHeatmapService, build_store
from services.sentiment.maintenance import run_periodic_sweep, sweep_once
from services.sentiment.provider import FinnhubSentimentProvider, SentimentScoreProvider

START = datetime(2024, 10, 14, 15, 0, tzinfo=timezone.utc)


class _FakeProvider(SentimentScoreProvider):
    source_name = "fake"

    def __init__(self, clock, finbert=40.0):
        self.clock = clock
        self.finbert = finbert
        self.calls = []

    async def compute_for(self, underlyings):
        self.calls.append(set(underlyings))
        return [
            SentimentScore(
                underlying=u,
                finbert_score=self.finbert,
                analyst_score=20.0,
                momentum_score=10.0,
                confidence=70.0,
                trend="rising",
                computed_at=self.clock.now(),
            )
            for u in sorted(underlyings)
        ]


class _FailingProvider(SentimentScoreProvider):
    source_name = "failing"

    def __init__(self):
        self.calls = 0

    async def compute_for(self, underlyings):
        self.calls += 1
        raise ProviderUnavailable("upstream timeout", source_name=self.source_name)


class _CrashingProvider(SentimentScoreProvider):
    source_name = "crashing"

    async def compute_for(self, underlyings):
        raise RuntimeError("nlp worker crashed")


class _DownStore(TTLStore):
    name = "down"

    def get_many(self, keys):
        raise CacheStoreUnavailable("unreachable", backend=self.name)

    def set_many(self, items, ttl_seconds):
        raise CacheStoreUnavailable("unreachable", backend=self.name)

    def delete(self, keys):
        raise CacheStoreUnavailable("unreachable", backend=self.name)

    def sweep_expired(self):
        raise CacheStoreUnavailable("unreachable", backend=self.name)


def _contract(ticker, underlying="XYZ", strike=100.0, kind="call", expiry=date(2024, 10, 18)):
    return OptionsContract(
        ticker=ticker,
        underlying=underlying,
        strike=strike,
        contract_type=kind,
        expiration_date=expiry,
    )


CONTRACTS = [
    _contract("O:XYZ-C100"),
    _contract("O:XYZ-P100", kind="put"),
    _contract("O:ABC-C50", underlying="ABC", strike=50),
]


class TestSentimentHeatmapService(unittest.TestCase):
    def setUp(self):
        self.clock = FixedClock(START)
        self.store = MemoryTTLStore(self.clock)
        self.provider = _FakeProvider(self.clock)
        self.svc = self._service(self.provider, self.store)

    def _service(self, provider, store, score_store=None):
        return SentimentHeatmapService(
            provider=provider,
            score_cache=ScoreCache(score_store or store, ttl_seconds=600, clock=self.clock),
            result_store=store,
            clock=self.clock,
            result_ttl_seconds=900,
        )

    def test_builds_rows_from_provider_scores(self):
        result = asyncio.run(self.svc.get_heatmap(CONTRACTS))
        self.assertEqual([(r.underlying, len(r.calls), len(r.puts)) for r in result.rows], [("ABC", 1, 0), ("XYZ", 1, 1)])
        self.assertEqual(result.total_cells, 3)
        self.assertAlmostEqual(result.avg_score, 28.5)
        self.assertEqual(self.provider.calls, [{"ABC", "XYZ"}])

    def test_repeat_request_is_served_from_cache(self):
        first = asyncio.run(self.svc.get_heatmap(CONTRACTS))
        self.clock.advance(minutes=5)
        second = asyncio.run(self.svc.get_heatmap(CONTRACTS))
        self.assertEqual(first, second)
        self.assertEqual(second.computed_at, START)
        self.assertEqual(len(self.provider.calls), 1)

    def test_equivalent_filters_share_the_cached_result(self):
        asyncio.run(self.svc.get_heatmap(CONTRACTS, HeatmapFilters(underlyings=["XYZ", "ABC"])))
        asyncio.run(self.svc.get_heatmap(CONTRACTS, HeatmapFilters(underlyings=["abc", "xyz"])))
        self.assertEqual(len(self.provider.calls), 1)

    def test_expired_result_is_recomputed(self):
        asyncio.run(self.svc.get_heatmap(CONTRACTS))
        self.clock.advance(seconds=900)
        result = asyncio.run(self.svc.get_heatmap(CONTRACTS))
        self.assertEqual(result.computed_at, self.clock.now())
        # score window (600s) has also lapsed
        self.assertEqual(len(self.provider.calls), 2)

    def test_fresh_scores_are_reused_across_filter_sets(self):
        asyncio.run(self.svc.get_heatmap(CONTRACTS))
        asyncio.run(self.svc.get_heatmap(CONTRACTS, HeatmapFilters(scoring_mode="news_only")))
        self.assertEqual(len(self.provider.calls), 1)

    def test_provider_only_asked_for_missing_underlyings(self):
        asyncio.run(self.svc.get_heatmap(CONTRACTS[:2]))
        asyncio.run(self.svc.get_heatmap(CONTRACTS))
        self.assertEqual(self.provider.calls, [{"XYZ"}, {"ABC"}])

    def test_force_refresh_bypasses_result_cache(self):
        asyncio.run(self.svc.get_heatmap(CONTRACTS))
        self.clock.advance(minutes=1)
        result = asyncio.run(self.svc.get_heatmap(CONTRACTS, force_refresh=True))
        self.assertEqual(result.computed_at, self.clock.now())

    def test_provider_outage_falls_back_to_defaults(self):
        provider = _FailingProvider()
        svc = self._service(provider, MemoryTTLStore(self.clock))
        with self.assertLogs("services.sentiment.heatmap_service", level="WARNING"):
            result = asyncio.run(svc.get_heatmap([_contract("O:XYZ-C100")]))

        self.assertEqual(provider.calls, 1)
        cell = result.rows[0].calls[0]
        self.assertEqual((cell.score, cell.confidence, cell.trend), (0.0, 50.0, "stable"))
        self.assertEqual((cell.news_count, cell.analyst_count), (0, 0))

    def test_unexpected_provider_error_falls_back_to_defaults(self):
        svc = self._service(_CrashingProvider(), MemoryTTLStore(self.clock))
        with self.assertLogs("services.sentiment.heatmap_service", level="ERROR"):
            result = asyncio.run(svc.get_heatmap([_contract("O:XYZ-C100")]))

        self.assertEqual(result.total_cells, 1)
        cell = result.rows[0].calls[0]
        self.assertEqual((cell.score, cell.confidence, cell.trend), (0.0, 50.0, "stable"))

    def test_undecodable_finnhub_response_falls_back_to_defaults(self):
        def handler(request):
            raise httpx.DecodingError("bad gzip", request=request)

        provider = FinnhubSentimentProvider(
            "test-key",
            base_url="https://finnhub.test/api/v1",
            retry_attempts=1,
            retry_wait=0,
            clock=self.clock,
            transport=httpx.MockTransport(handler),
        )
        svc = self._service(provider, MemoryTTLStore(self.clock))
        with self.assertLogs("services.sentiment.heatmap_service", level="WARNING"):
            result = asyncio.run(svc.get_heatmap([_contract("O:XYZ-C100")]))

        cell = result.rows[0].calls[0]
        self.assertEqual((cell.score, cell.confidence, cell.trend), (0.0, 50.0, "stable"))

    def test_cache_outage_still_serves_results(self):
        svc = self._service(self.provider, _DownStore())
        with self.assertLogs("services.sentiment.heatmap_service", level="WARNING"):
            result = asyncio.run(svc.get_heatmap(CONTRACTS))
        self.assertEqual(result.total_cells, 3)
        asyncio.run(svc.get_heatmap(CONTRACTS))
        self.assertEqual(len(self.provider.calls), 2)

    def test_empty_contract_list(self):
        result = asyncio.run(self.svc.get_heatmap([]))
        self.assertEqual(result.total_cells, 0)
        self.assertEqual((result.min_score, result.max_score, result.avg_score), (-100.0, 100.0, 0.0))
        self.assertEqual(self.provider.calls, [])

    def test_sweep_covers_both_stores_once(self):
        score_store = MemoryTTLStore(self.clock)
        svc = self._service(self.provider, self.store, score_store)
        asyncio.run(svc.get_heatmap(CONTRACTS))
        self.assertEqual(svc.sweep_expired(), 0)

        self.clock.advance(seconds=900)
        # 1 heatmap entry + 2 score entries
        self.assertEqual(svc.sweep_expired(), 3)

    def test_shared_store_is_swept_once(self):
        asyncio.run(self.svc.get_heatmap(CONTRACTS))
        self.clock.advance(seconds=900)
        with patch.object(self.store, "sweep_expired", wraps=self.store.sweep_expired) as sweep:
            self.assertEqual(self.svc.sweep_expired(), 3)
        sweep.assert_called_once()

    def test_sweep_tolerates_store_outage(self):
        svc = self._service(self.provider, _DownStore())
        self.assertEqual(svc.sweep_expired(), 0)

    def test_invalidate_scores_forces_provider_call(self):
        asyncio.run(self.svc.get_heatmap(CONTRACTS))
        self.assertEqual(self.svc.invalidate_scores(["xyz"]), 1)
        asyncio.run(self.svc.get_heatmap(CONTRACTS, HeatmapFilters(min_confidence=10)))
        self.assertEqual(self.provider.calls, [{"ABC", "XYZ"}, {"XYZ"}])


class TestMaintenance(unittest.TestCase):
    def test_sweep_once_runs_off_loop(self):
        clock = FixedClock(START)
        store = MemoryTTLStore(clock)
        store.set("k", 1, 1)
        clock.advance(seconds=2)
        svc = SentimentHeatmapService(
            provider=_FakeProvider(clock),
            score_cache=ScoreCache(store, clock=clock),
            result_store=store,
            clock=clock,
        )
        self.assertEqual(asyncio.run(sweep_once(svc)), 1)

    def test_periodic_sweep_runs_until_cancelled(self):
        class _CountingService:
            def __init__(self):
                self.sweeps = 0

            def sweep_expired(self):
                self.sweeps += 1
                return 0

        svc = _CountingService()

        async def _run():
            task = asyncio.create_task(run_periodic_sweep(svc, 0.01))
            await asyncio.sleep(0.1)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

        asyncio.run(_run())
        self.assertGreaterEqual(svc.sweeps, 1)

    def test_periodic_sweep_disabled(self):
        self.assertIsNone(asyncio.run(run_periodic_sweep(object(), 0)))


class TestBuildStore(unittest.TestCase):
    def test_backends(self):
        clock = FixedClock(START)
        self.assertEqual(build_store("memory", clock).name, "memory")
        self.assertEqual(build_store("redis", clock).name, "redis")
        self.assertEqual(build_store("sql", clock).name, "sql")
        self.assertEqual(build_store("bogus", clock).name, "memory")


if __name__ == "__main__":
    unittest.main()
