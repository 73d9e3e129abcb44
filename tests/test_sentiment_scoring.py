import os
import unittest
from datetime import datetime, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from pydantic import ValidationError

from schemas.sentiment_heatmap import SentimentScore
from services.sentiment.scoring import (
    classify_trend,
    composite_confidence,
    composite_score,
    sentiment_label,
)

NOW = datetime(2024, 10, 14, 15, 0, tzinfo=timezone.utc)


class TestCompositeScore(unittest.TestCase):
    def test_weighted_recombination(self):
        self.assertAlmostEqual(composite_score(40, 20, 10), 28.5)

    def test_clamped_to_score_range(self):
        self.assertEqual(composite_score(500, 500, 500), 100.0)
        self.assertEqual(composite_score(-500, -500, -500), -100.0)

    def test_model_derives_composite_from_sub_scores(self):
        score = SentimentScore(
            underlying="xyz",
            finbert_score=40,
            analyst_score=20,
            momentum_score=10,
            confidence=70,
            computed_at=NOW,
        )
        self.assertEqual(score.underlying, "XYZ")
        self.assertAlmostEqual(score.composite_score, 28.5)
        self.assertAlmostEqual(score.model_dump()["composite_score"], 28.5)

    def test_model_clamps_sub_scores_and_confidence(self):
        score = SentimentScore(
            underlying="XYZ",
            finbert_score=250,
            analyst_score=-180,
            momentum_score=0,
            confidence=140,
            computed_at=NOW,
        )
        self.assertEqual(score.finbert_score, 100.0)
        self.assertEqual(score.analyst_score, -100.0)
        self.assertEqual(score.confidence, 100.0)
        self.assertTrue(-100.0 <= score.composite_score <= 100.0)

    def test_model_rejects_negative_counts(self):
        with self.assertRaises(ValidationError):
            SentimentScore(underlying="XYZ", news_count=-1, computed_at=NOW)

    def test_composite_confidence_uses_same_weights(self):
        self.assertAlmostEqual(composite_confidence(100, 0, 0), 50.0)
        self.assertAlmostEqual(composite_confidence(80, 60, 40), 67.0)


class TestClassifyTrend(unittest.TestCase):
    def test_not_enough_history_is_stable(self):
        self.assertEqual(classify_trend(50, []), "stable")
        self.assertEqual(classify_trend(50, [10]), "stable")

    def test_small_moves_are_stable(self):
        self.assertEqual(classify_trend(12, [10, 0]), "stable")

    def test_rising_and_accelerating(self):
        # momentum +10, previous momentum +10 -> no acceleration
        self.assertEqual(classify_trend(30, [20, 10]), "rising")
        # momentum +20, previous momentum +5 -> accelerating
        self.assertEqual(classify_trend(40, [20, 15]), "accelerating")

    def test_falling_and_decelerating(self):
        self.assertEqual(classify_trend(-30, [-20, -10]), "falling")
        self.assertEqual(classify_trend(-40, [-20, -15]), "decelerating")


class TestSentimentLabel(unittest.TestCase):
    def test_thresholds(self):
        self.assertEqual(sentiment_label(60), "Very Bullish")
        self.assertEqual(sentiment_label(30), "Bullish")
        self.assertEqual(sentiment_label(10), "Slightly Bullish")
        self.assertEqual(sentiment_label(0), "Neutral")
        self.assertEqual(sentiment_label(-10), "Neutral")
        self.assertEqual(sentiment_label(-11), "Slightly Bearish")
        self.assertEqual(sentiment_label(-45), "Bearish")
        self.assertEqual(sentiment_label(-61), "Very Bearish")


if __name__ == "__main__":
    unittest.main()
