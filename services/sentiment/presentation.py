# services/sentiment/presentation.py
"""
Pure helpers for rendering layers: colour buckets, opacity, labels, icons.
Nothing here is used to compute or filter the heatmap itself.
"""
from __future__ import annotations

from typing import Dict, Tuple

from services.sentiment.scoring import clamp

GRADIENT_BUCKETS: Tuple[str, ...] = (
    "strong_negative",
    "negative",
    "mild_negative",
    "neutral",
    "mild_positive",
    "positive",
    "strong_positive",
)

# Upper (exclusive) bounds of every bucket but the last
GRADIENT_CUTS: Tuple[float, ...] = (0.20, 0.35, 0.45, 0.55, 0.65, 0.80)

GRADIENT_CSS: Dict[str, str] = {
    "strong_negative": "bg-red-600 text-white",
    "negative": "bg-red-400 text-white",
    "mild_negative": "bg-orange-400 text-white",
    "neutral": "bg-yellow-300 text-gray-900",
    "mild_positive": "bg-lime-300 text-gray-900",
    "positive": "bg-green-400 text-white",
    "strong_positive": "bg-green-600 text-white",
}

MIN_OPACITY = 0.3
MAX_OPACITY = 1.0

TREND_ICONS: Dict[str, str] = {
    "accelerating": "⏫",
    "rising": "📈",
    "stable": "➡️",
    "falling": "📉",
    "decelerating": "⏬",
}


def gradient_position(score: float, global_min: float, global_max: float) -> float:
    span = global_max - global_min
    if span == 0:
        return 0.5
    return (score - global_min) / span


def gradient_bucket(score: float, global_min: float, global_max: float) -> str:
    position = gradient_position(score, global_min, global_max)
    for cut, bucket in zip(GRADIENT_CUTS, GRADIENT_BUCKETS):
        if position < cut:
            return bucket
    return GRADIENT_BUCKETS[-1]


def gradient_css_class(bucket: str) -> str:
    return GRADIENT_CSS.get(bucket, GRADIENT_CSS["neutral"])


def confidence_opacity(confidence: float) -> float:
    c = clamp(float(confidence), 0.0, 100.0)
    return MIN_OPACITY + (MAX_OPACITY - MIN_OPACITY) * c / 100.0


def sentiment_color(score: float) -> str:
    if score >= 60:
        return "#16a34a"
    if score >= 30:
        return "#22c55e"
    if score >= 10:
        return "#84cc16"
    if score >= -10:
        return "#eab308"
    if score >= -30:
        return "#f97316"
    if score >= -60:
        return "#ef4444"
    return "#dc2626"


def trend_icon(trend: str) -> str:
    return TREND_ICONS.get(trend, "❓")
