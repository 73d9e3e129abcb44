# services/clock.py
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo


class Clock(ABC):
    """Source of "now" for cache expiry and day counts. Always timezone-aware UTC."""

    def __init__(self, market_tz: Optional[tzinfo] = None) -> None:
        self.market_tz = market_tz or timezone.utc

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        """Calendar date at the listing exchange (midnight-normalised "today")."""
        return self.now().astimezone(self.market_tz).date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Manually driven clock for tests and replays."""

    def __init__(self, at: datetime, market_tz: Optional[tzinfo] = None) -> None:
        super().__init__(market_tz)
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        self._now = at
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, at: datetime) -> None:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        with self._lock:
            self._now = at

    def advance(self, **kwargs: float) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(**kwargs)
            return self._now


def market_timezone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)
