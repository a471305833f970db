"""YouTube Data API quota tracker plus a short-lived search result cache.

YouTube Data API v3 grants 10,000 units/day, reset at midnight Pacific.
search.list costs 100 units, videos.list and each commentThreads page cost 1.

Process-local only: a counter and a TTL cache. Usage is recorded by callers
after each billed operation.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import structlog
from cachetools import TTLCache  # type: ignore[import-untyped]

from threadsense.core.config import settings
from threadsense.core.metrics import youtube_quota_units_total
from threadsense.models.schemas import QuotaStatus

logger = structlog.get_logger(__name__)

SEARCH_UNIT_COST = 100
LIST_UNIT_COST = 1
SEARCH_COST = SEARCH_UNIT_COST + LIST_UNIT_COST  # search.list + videos.list for stats
EXTRACT_COST = 8  # videos.list + ~5-7 commentThreads pages
LOW_QUOTA_WARNING = 2000
_SEARCH_CACHE_SIZE = 50
_PACIFIC = ZoneInfo("America/Los_Angeles")


def today_pacific() -> str:
    return datetime.now(_PACIFIC).date().isoformat()


class QuotaTracker:
    """Daily unit counter with Pacific-day rollover.

    Increments go through a lock so concurrent extractions never lose units.
    ``used`` only grows within a day; it drops back to zero when the observed
    Pacific date changes.
    """

    def __init__(
        self,
        *,
        daily_limit: int | None = None,
        today: Callable[[], str] = today_pacific,
        cache_ttl: int | None = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.daily_limit = daily_limit or settings.YOUTUBE_DAILY_QUOTA_LIMIT
        self._today = today
        self._lock = threading.Lock()
        self._used = 0
        self._reset_date = today()
        self._search_cache: TTLCache = TTLCache(
            maxsize=_SEARCH_CACHE_SIZE,
            ttl=cache_ttl or settings.YOUTUBE_SEARCH_CACHE_TTL,
            timer=timer,
        )

    def _reset_if_new_day(self) -> None:
        # Caller holds the lock
        today = self._today()
        if today != self._reset_date:
            self._used = 0
            self._reset_date = today
            self._search_cache.clear()
            logger.info("youtube_quota.reset_for_new_day", date=today)

    def record_usage(self, units: int, operation: str = "other") -> None:
        with self._lock:
            self._reset_if_new_day()
            self._used += units
            remaining = self.daily_limit - self._used
            used = self._used
        youtube_quota_units_total.labels(operation=operation).inc(units)
        if remaining < LOW_QUOTA_WARNING:
            logger.warning(
                "youtube_quota.low",
                remaining=remaining,
                used=used,
                limit=self.daily_limit,
            )

    def can_afford(self, units: int) -> bool:
        with self._lock:
            self._reset_if_new_day()
            return self._used + units <= self.daily_limit

    def can_afford_search(self) -> bool:
        return self.can_afford(SEARCH_COST)

    def can_afford_extraction(self) -> bool:
        return self.can_afford(EXTRACT_COST)

    def status(self) -> QuotaStatus:
        with self._lock:
            self._reset_if_new_day()
            return QuotaStatus(
                used=self._used,
                limit=self.daily_limit,
                remaining=self.daily_limit - self._used,
                reset_date=self._reset_date,
            )

    def get_cached_search(self, key: str) -> Any | None:
        with self._lock:
            return self._search_cache.get(key)

    def set_cached_search(self, key: str, result: Any) -> None:
        with self._lock:
            self._search_cache[key] = result

    def reset(self) -> None:
        with self._lock:
            self._used = 0
            self._reset_date = self._today()
            self._search_cache.clear()


youtube_quota = QuotaTracker()
