# services/sentiment/provider.py
"""
Sentiment source boundary.

`SentimentScoreProvider.compute_for` is the only call the heatmap pipeline
makes into the (slow) sentiment sources. It is treated as side-effect free
from the pipeline's point of view and is invoked at most once per cache miss.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Set

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.heatmap_settings import (
    FINNHUB_API_KEY,
    FINNHUB_BASE_URL,
    FINNHUB_RETRY_ATTEMPTS,
    FINNHUB_RETRY_WAIT_SEC,
    FINNHUB_TIMEOUT_SEC,
    SENTIMENT_EVENT_WINDOW_DAYS,
)
from models.sentiment_score_snapshot import SentimentScoreSnapshot
from schemas.sentiment_heatmap import SentimentScore
from services.clock import Clock, SystemClock
from services.sentiment.errors import ProviderUnavailable
from services.sentiment.scoring import (
    DEFAULT_CONFIDENCE,
    classify_trend,
    clamp_confidence,
    clamp_score,
    composite_confidence,
    composite_score,
)

logger = logging.getLogger(__name__)


class SentimentScoreProvider(ABC):
    source_name = "provider"

    @abstractmethod
    async def compute_for(self, underlyings: Set[str]) -> List[SentimentScore]:
        """
        Compute fresh scores for the given underlyings.

        May return fewer scores than asked for (the pipeline fills the gaps
        with defaults). Raises ProviderUnavailable when the source cannot be
        reached at all.
        """


# ---------------------------------------------------------------------------
# Score history (trend input)
# ---------------------------------------------------------------------------

class ScoreHistory(ABC):
    @abstractmethod
    def recent_composites(self, underlying: str, *, before: date, limit: int = 7) -> List[float]:
        """Earlier daily composites, most recent first."""

    @abstractmethod
    def record(self, score: SentimentScore, *, as_of: date) -> None:
        ...


class SqlScoreHistory(ScoreHistory):
    """Daily composite snapshots in `sentiment_score_snapshots`. One row per underlying per day."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def recent_composites(self, underlying: str, *, before: date, limit: int = 7) -> List[float]:
        db = self.session_factory()
        try:
            rows = db.execute(
                select(SentimentScoreSnapshot.composite_score)
                .where(
                    SentimentScoreSnapshot.underlying == underlying,
                    SentimentScoreSnapshot.as_of_date < before,
                )
                .order_by(SentimentScoreSnapshot.as_of_date.desc())
                .limit(limit)
            ).scalars().all()
            return [float(v) for v in rows]
        except SQLAlchemyError as e:
            logger.warning("Score history read failed for %s: %s", underlying, e)
            return []
        finally:
            db.close()

    def record(self, score: SentimentScore, *, as_of: date) -> None:
        db = self.session_factory()
        try:
            row = db.execute(
                select(SentimentScoreSnapshot).where(
                    SentimentScoreSnapshot.underlying == score.underlying,
                    SentimentScoreSnapshot.as_of_date == as_of,
                )
            ).scalar_one_or_none()
            if row is None:
                row = SentimentScoreSnapshot(underlying=score.underlying, as_of_date=as_of)
                db.add(row)
            row.composite_score = score.composite_score
            row.finbert_score = score.finbert_score
            row.analyst_score = score.analyst_score
            row.momentum_score = score.momentum_score
            row.confidence = score.confidence
            row.trend = score.trend
            row.news_count = score.news_count
            row.analyst_count = score.analyst_count
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Score history write failed for %s: %s", score.underlying, e)
        finally:
            db.close()


# ---------------------------------------------------------------------------
# Finnhub-backed provider
# ---------------------------------------------------------------------------

class Component(NamedTuple):
    score: float
    confidence: float
    count: int


NEWS_DEFAULT = Component(0.0, 0.0, 0)
ANALYST_DEFAULT = Component(0.0, DEFAULT_CONFIDENCE, 0)
EVENT_DEFAULT = Component(0.0, 0.0, 0)

# Finnhub recommendation buckets on the 1 (strong sell) .. 5 (strong buy) scale
RATING_SCORES: Dict[str, int] = {
    "strongBuy": 5,
    "buy": 4,
    "hold": 3,
    "sell": 2,
    "strongSell": 1,
}

MAX_EVENTS = 5


def _to_float(x: Any) -> float:
    try:
        return float(x) if x is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _parse_date(x: Any) -> Optional[date]:
    try:
        return date.fromisoformat(str(x)[:10])
    except (TypeError, ValueError):
        return None


def news_component(payload: Any) -> Component:
    """From /news-sentiment: bullish minus bearish share, confidence from article volume."""
    if not isinstance(payload, dict):
        return NEWS_DEFAULT
    sentiment = payload.get("sentiment") or {}
    buzz = payload.get("buzz") or {}
    articles = int(_to_float(buzz.get("articlesInLastWeek")))
    bullish = _to_float(sentiment.get("bullishPercent"))
    bearish = _to_float(sentiment.get("bearishPercent"))
    if articles <= 0 and bullish == 0 and bearish == 0:
        return NEWS_DEFAULT
    return Component(
        score=clamp_score((bullish - bearish) * 100.0),
        confidence=clamp_confidence(articles * 10.0),
        count=max(0, articles),
    )


def analyst_component(payload: Any) -> Component:
    """From /stock/recommendation: consensus of the latest period mapped onto -50..+50."""
    if not isinstance(payload, list) or not payload:
        return ANALYST_DEFAULT
    periods = [p for p in payload if isinstance(p, dict)]
    if not periods:
        return ANALYST_DEFAULT
    latest = max(periods, key=lambda p: str(p.get("period") or ""))

    total = 0
    weighted = 0.0
    for field, rating in RATING_SCORES.items():
        n = int(_to_float(latest.get(field)))
        total += n
        weighted += n * rating
    if total <= 0:
        return ANALYST_DEFAULT

    consensus = weighted / total
    return Component(
        score=clamp_score(((consensus - 1.0) / 4.0) * 100.0 - 50.0),
        confidence=clamp_confidence(total / 5.0 * 100.0),
        count=total,
    )


def event_component(payload: Any, *, today: date, window_days: int) -> Component:
    """From /stock/earnings: time-decayed earnings surprises inside the event window."""
    if not isinstance(payload, list) or window_days <= 0:
        return EVENT_DEFAULT

    events = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        when = _parse_date(item.get("period"))
        if when is None or item.get("surprisePercent") is None:
            continue
        days_since = (today - when).days
        if 0 <= days_since <= window_days:
            events.append((when, days_since, _to_float(item.get("surprisePercent"))))
    if not events:
        return EVENT_DEFAULT

    events.sort(key=lambda e: e[0], reverse=True)
    events = events[:MAX_EVENTS]

    total_score = 0.0
    total_weight = 0.0
    for _, days_since, surprise_pct in events:
        weight = max(0.1, 1.0 - days_since / window_days)
        total_score += clamp_score(surprise_pct * 10.0) * weight
        total_weight += weight

    return Component(
        score=clamp_score(total_score / total_weight) if total_weight else 0.0,
        confidence=clamp_confidence(len(events) * 20.0),
        count=len(events),
    )


class FinnhubSentimentProvider(SentimentScoreProvider):
    """
    Builds scores from three Finnhub feeds per underlying: news sentiment,
    analyst recommendation trends, and earnings surprises.

    A feed answering with an HTTP error falls back to that component's
    defaults. Transport failures (DNS, connect, timeout) are retried with
    backoff; if they persist the source is down and they surface as
    ProviderUnavailable, as do decoding and redirect failures.
    """

    source_name = "finnhub"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: str = FINNHUB_BASE_URL,
        timeout: float = FINNHUB_TIMEOUT_SEC,
        retry_attempts: int = FINNHUB_RETRY_ATTEMPTS,
        retry_wait: float = FINNHUB_RETRY_WAIT_SEC,
        event_window_days: int = SENTIMENT_EVENT_WINDOW_DAYS,
        history: Optional[ScoreHistory] = None,
        clock: Optional[Clock] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else FINNHUB_API_KEY
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_wait = retry_wait
        self.event_window_days = event_window_days
        self.history = history
        self.clock = clock or SystemClock()
        self._transport = transport

    @asynccontextmanager
    async def _client(self, client: Optional[httpx.AsyncClient] = None):
        if client is not None:
            yield client
        else:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as c:
                yield c

    async def _fetch(self, c: httpx.AsyncClient, path: str, symbol: str) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=self.retry_wait * 8),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        return await retrying(
            c.get, f"{self.base_url}/{path}", params={"symbol": symbol, "token": self.api_key}
        )

    async def _get_json(self, c: httpx.AsyncClient, path: str, symbol: str) -> Any:
        try:
            r = await self._fetch(c, path, symbol)
        except httpx.RequestError as e:
            # transport errors arrive here after retries; decoding and redirect errors on first try
            raise ProviderUnavailable(
                f"{path} failed: {e}", source_name=self.source_name, details={"symbol": symbol}
            ) from e

        if r.status_code >= 400:
            logger.warning("Finnhub %s for %s returned HTTP %s", path, symbol, r.status_code)
            return None
        try:
            return r.json()
        except ValueError:
            logger.warning("Finnhub %s for %s returned non-JSON body", path, symbol)
            return None

    async def _score_one(self, c: httpx.AsyncClient, symbol: str) -> SentimentScore:
        news_raw, analyst_raw, earnings_raw = await asyncio.gather(
            self._get_json(c, "news-sentiment", symbol),
            self._get_json(c, "stock/recommendation", symbol),
            self._get_json(c, "stock/earnings", symbol),
        )

        now = self.clock.now()
        today = self.clock.today()
        news = news_component(news_raw)
        analyst = analyst_component(analyst_raw)
        event = event_component(earnings_raw, today=today, window_days=self.event_window_days)

        composite = composite_score(news.score, analyst.score, event.score)
        history = self.history.recent_composites(symbol, before=today) if self.history else []

        score = SentimentScore(
            underlying=symbol,
            finbert_score=news.score,
            analyst_score=analyst.score,
            momentum_score=event.score,
            confidence=composite_confidence(news.confidence, analyst.confidence, event.confidence),
            trend=classify_trend(composite, history),
            news_count=news.count,
            analyst_count=analyst.count,
            computed_at=now,
        )
        if self.history is not None:
            self.history.record(score, as_of=today)
        return score

    async def compute_for(self, underlyings: Set[str]) -> List[SentimentScore]:
        symbols = sorted({(u or "").strip().upper() for u in underlyings if (u or "").strip()})
        if not symbols:
            return []
        if not self.api_key:
            raise ProviderUnavailable("Missing FINNHUB_API_KEY", source_name=self.source_name)

        async with self._client() as c:
            results = await asyncio.gather(
                *[self._score_one(c, s) for s in symbols], return_exceptions=True
            )

        scores: List[SentimentScore] = []
        failures: List[str] = []
        for symbol, res in zip(symbols, results):
            if isinstance(res, ProviderUnavailable):
                failures.append(symbol)
                continue
            if isinstance(res, BaseException):
                raise res
            scores.append(res)

        if failures and not scores:
            raise ProviderUnavailable(
                f"Finnhub unreachable for all {len(failures)} underlyings",
                source_name=self.source_name,
                details={"symbols": failures},
            )
        if failures:
            logger.warning("Finnhub unreachable for %s; they fall back to defaults", ",".join(failures))

        logger.info("Computed sentiment for %d underlyings via Finnhub", len(scores))
        return scores
