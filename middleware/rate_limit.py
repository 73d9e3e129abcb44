# middleware/rate_limit.py
"""
Rate limiting configuration using slowapi.

Usage in route files:
    from middleware.rate_limit import limiter

    @router.post("/heatmap")
    @limiter.limit(HEATMAP_RATE_LIMIT)
    async def my_endpoint(request: Request, ...):
        ...
"""
import hashlib
import logging
import os

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

logger = logging.getLogger(__name__)


def _get_rate_limit_key(request: Request) -> str:
    """
    Identify the caller for rate-limiting.

    Strategy:
      1. If the request carries an X-API-Key header, bucket by a digest of it
         so the limit follows the client across IPs (the raw key is never stored).
      2. Otherwise, fall back to client IP.
    """
    api_key = (request.headers.get("X-API-Key") or "").strip()
    if api_key:
        return "key:" + hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]
    return get_remote_address(request)


# ─── Default limits ────────────────────────────────────────────────
# Env-overridable so you can tune per-environment without redeploying.
DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")

limiter = Limiter(
    key_func=_get_rate_limit_key,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("REDIS_URL") or "memory://",
    strategy="fixed-window",
)
