# services/sentiment/scoring.py
"""
Pure scoring math shared by the provider, the schemas and the filter pipeline.

Scores live on a -100 (very bearish) .. +100 (very bullish) scale; confidence
on 0..100. Nothing here does I/O.
"""
from __future__ import annotations

from typing import Literal, Sequence

Trend = Literal["accelerating", "rising", "stable", "falling", "decelerating"]

# finbert (news) / analyst / event momentum
COMPOSITE_WEIGHTS = (0.50, 0.35, 0.15)

SCORE_MIN = -100.0
SCORE_MAX = 100.0

# Substituted when an underlying has no score at all
DEFAULT_SCORE = 0.0
DEFAULT_CONFIDENCE = 50.0
DEFAULT_TREND: Trend = "stable"

# Momentum below this (absolute) is noise
TREND_MOMENTUM_THRESHOLD = 5.0
TREND_ACCELERATION_THRESHOLD = 5.0


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def clamp_score(value: float) -> float:
    return clamp(float(value), SCORE_MIN, SCORE_MAX)


def clamp_confidence(value: float) -> float:
    return clamp(float(value), 0.0, 100.0)


def composite_score(finbert: float, analyst: float, momentum: float) -> float:
    wf, wa, wm = COMPOSITE_WEIGHTS
    return clamp_score(wf * finbert + wa * analyst + wm * momentum)


def composite_confidence(finbert_conf: float, analyst_conf: float, momentum_conf: float) -> float:
    wf, wa, wm = COMPOSITE_WEIGHTS
    return clamp_confidence(wf * finbert_conf + wa * analyst_conf + wm * momentum_conf)


def classify_trend(current: float, history: Sequence[float]) -> Trend:
    """
    Classify the direction of the composite score.

    `history` holds earlier composites, most recent first. Fewer than two
    earlier points is not enough to tell momentum from acceleration.
    """
    if len(history) < 2:
        return "stable"

    previous, before_previous = history[0], history[1]
    momentum = current - previous
    acceleration = momentum - (previous - before_previous)

    if abs(momentum) < TREND_MOMENTUM_THRESHOLD:
        return "stable"
    if momentum > 0:
        return "accelerating" if acceleration > TREND_ACCELERATION_THRESHOLD else "rising"
    return "decelerating" if acceleration < -TREND_ACCELERATION_THRESHOLD else "falling"


def sentiment_label(score: float) -> str:
    if score >= 60:
        return "Very Bullish"
    if score >= 30:
        return "Bullish"
    if score >= 10:
        return "Slightly Bullish"
    if score >= -10:
        return "Neutral"
    if score >= -30:
        return "Slightly Bearish"
    if score >= -60:
        return "Bearish"
    return "Very Bearish"
