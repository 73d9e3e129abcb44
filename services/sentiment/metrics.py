# services/sentiment/metrics.py
from prometheus_client import Counter, Histogram

# Metrics
HEATMAP_BUILD_DURATION = Histogram(
    "sentiment_heatmap_build_seconds",
    "Time to build a heatmap on a result-cache miss",
)

HEATMAP_CACHE_LOOKUPS = Counter(
    "sentiment_heatmap_cache_lookups_total",
    "Heatmap result-cache lookups",
    ["outcome"],  # hit | miss | bypass
)

PROVIDER_FAILURES = Counter(
    "sentiment_provider_failures_total",
    "Sentiment provider calls that degraded to default scores",
    ["source"],
)

CACHE_SWEPT_ENTRIES = Counter(
    "sentiment_cache_swept_entries_total",
    "Expired cache entries deleted by sweeps",
)
