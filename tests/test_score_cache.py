import os
import unittest
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from schemas.sentiment_heatmap import SentimentScore
from services.cache.score_cache import ScoreCache
from services.cache.ttl_store import MemoryTTLStore, TTLStore
from services.clock import FixedClock
from services.sentiment.cache_keys import score_cache_key
from services.sentiment.errors import CacheStoreUnavailable

START = datetime(2024, 10, 14, 15, 0, tzinfo=timezone.utc)


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


def _score(underlying, computed_at=START, finbert=40.0):
    return SentimentScore(
        underlying=underlying,
        finbert_score=finbert,
        analyst_score=20.0,
        momentum_score=10.0,
        confidence=70.0,
        trend="rising",
        news_count=9,
        analyst_count=4,
        computed_at=computed_at,
    )


class TestScoreCache(unittest.TestCase):
    def setUp(self):
        self.clock = FixedClock(START)
        self.store = MemoryTTLStore(self.clock)
        self.cache = ScoreCache(self.store, ttl_seconds=600, clock=self.clock)

    def test_round_trip_preserves_score(self):
        original = _score("XYZ")
        self.cache.put([original])
        cached = self.cache.get(["xyz"])
        self.assertEqual(list(cached), ["XYZ"])
        self.assertEqual(cached["XYZ"], original)
        self.assertAlmostEqual(cached["XYZ"].composite_score, 28.5)

    def test_only_requested_underlyings_come_back(self):
        self.cache.put([_score("AAA"), _score("BBB")])
        self.assertEqual(set(self.cache.get(["AAA", "CCC"])), {"AAA"})

    def test_entries_expire_with_the_window(self):
        self.cache.put([_score("XYZ")])
        self.clock.advance(seconds=599)
        self.assertIn("XYZ", self.cache.get(["XYZ"]))
        self.clock.advance(seconds=1)
        self.assertEqual(self.cache.get(["XYZ"]), {})

    def test_stale_computed_at_is_ignored_even_if_store_still_holds_it(self):
        stale = _score("XYZ", computed_at=START - timedelta(hours=1))
        self.store.set(score_cache_key("XYZ"), stale.model_dump(mode="json"), 3600)
        self.assertEqual(self.cache.get(["XYZ"]), {})

    def test_malformed_payload_is_skipped(self):
        self.store.set(score_cache_key("XYZ"), {"underlying": "XYZ"}, 600)
        self.assertEqual(self.cache.get(["XYZ"]), {})

    def test_invalidate(self):
        self.cache.put([_score("AAA"), _score("BBB")])
        self.assertEqual(self.cache.invalidate(["aaa", "ZZZ"]), 1)
        self.assertEqual(set(self.cache.get(["AAA", "BBB"])), {"BBB"})

    def test_store_outage_degrades_to_empty(self):
        cache = ScoreCache(_DownStore(), ttl_seconds=600, clock=self.clock)
        with self.assertLogs("services.cache.score_cache", level="WARNING"):
            self.assertEqual(cache.get(["XYZ"]), {})
        cache.put([_score("XYZ")])  # must not raise
        self.assertEqual(cache.invalidate(["XYZ"]), 0)


if __name__ == "__main__":
    unittest.main()
