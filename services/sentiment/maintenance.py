# services/sentiment/maintenance.py
from __future__ import annotations

import asyncio
import logging

from services.sentiment.heatmap_service import SentimentHeatmapService

logger = logging.getLogger(__name__)


async def sweep_once(service: SentimentHeatmapService) -> int:
    # Store sweeps are blocking I/O (redis / SQL); keep them off the event loop.
    return await asyncio.to_thread(service.sweep_expired)


async def run_periodic_sweep(service: SentimentHeatmapService, interval_seconds: int) -> None:
    """Sweep expired cache entries every `interval_seconds` until cancelled."""
    if interval_seconds <= 0:
        logger.info("Periodic cache sweep disabled")
        return

    logger.info("Periodic cache sweep every %ss", interval_seconds)
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await sweep_once(service)
            except Exception:
                logger.exception("Periodic cache sweep failed")
    except asyncio.CancelledError:
        logger.info("Periodic cache sweep stopped")
        raise
