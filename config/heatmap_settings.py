# config/heatmap_settings.py
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

# Whole-result (heatmap) cache: 15 minutes
HEATMAP_CACHE_TTL_SEC = int(os.getenv("HEATMAP_CACHE_TTL_SEC", "900"))
# Per-underlying score freshness window
SCORE_CACHE_TTL_SEC = int(os.getenv("SCORE_CACHE_TTL_SEC", "600"))

# memory | redis | sql
HEATMAP_CACHE_BACKEND = (os.getenv("HEATMAP_CACHE_BACKEND") or "memory").strip().lower()

REDIS_URL = os.getenv("REDIS_URL")
# Prefix isolates app + env, e.g. "sentimentheatmap:prod:"
REDIS_PREFIX = os.getenv("REDIS_PREFIX", "sentimentheatmap:")
CACHE_LOCAL_TTL_SEC = int(os.getenv("CACHE_LOCAL_TTL_SEC", "60"))

# 0 disables the background sweep
HEATMAP_SWEEP_INTERVAL_SEC = int(os.getenv("HEATMAP_SWEEP_INTERVAL_SEC", "300"))

# "today" for day-count purposes is taken in the listing exchange's zone
HEATMAP_MARKET_TZ = os.getenv("HEATMAP_MARKET_TZ", "America/New_York")

FINNHUB_API_KEY = os.getenv("FINNHUB_API_KEY")
FINNHUB_BASE_URL = os.getenv("FINNHUB_BASE_URL", "https://finnhub.io/api/v1")
FINNHUB_TIMEOUT_SEC = float(os.getenv("FINNHUB_TIMEOUT_SEC", "5.0"))
# Transport failures only; HTTP error statuses are never retried
FINNHUB_RETRY_ATTEMPTS = int(os.getenv("FINNHUB_RETRY_ATTEMPTS", "3"))
FINNHUB_RETRY_WAIT_SEC = float(os.getenv("FINNHUB_RETRY_WAIT_SEC", "0.5"))
SENTIMENT_EVENT_WINDOW_DAYS = int(os.getenv("SENTIMENT_EVENT_WINDOW_DAYS", "120"))

HEATMAP_RATE_LIMIT = os.getenv("HEATMAP_RATE_LIMIT", "30/minute")

CORS_ORIGINS = [
    o.strip()
    for o in (os.getenv("CORS_ORIGINS") or "http://localhost:3000").split(",")
    if o.strip()
]
