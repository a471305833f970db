"""Unit tests for the YouTube quota tracker and search cache."""

import threading

from threadsense.core.quota import SEARCH_COST, QuotaTracker


class _Day:
    def __init__(self, value: str = "2026-03-01"):
        self.value = value

    def __call__(self) -> str:
        return self.value


class _Timer:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_usage_accumulates_within_a_day() -> None:
    tracker = QuotaTracker(daily_limit=1000, today=_Day())

    tracker.record_usage(100, "search")
    tracker.record_usage(1, "videos")
    status = tracker.status()

    assert status.used == 101
    assert status.remaining == 899
    assert status.limit == 1000
    assert status.reset_date == "2026-03-01"


def test_new_pacific_day_resets_counter_and_cache() -> None:
    day = _Day()
    tracker = QuotaTracker(daily_limit=1000, today=day)
    tracker.record_usage(500)
    tracker.set_cached_search("cats:10:", {"videos": []})

    day.value = "2026-03-02"

    assert tracker.status().used == 0
    assert tracker.status().reset_date == "2026-03-02"
    assert tracker.get_cached_search("cats:10:") is None


def test_can_afford_search_respects_limit() -> None:
    tracker = QuotaTracker(daily_limit=SEARCH_COST + 50, today=_Day())

    assert tracker.can_afford_search()
    tracker.record_usage(50)
    assert tracker.can_afford_search()
    tracker.record_usage(1)
    assert not tracker.can_afford_search()
    assert tracker.can_afford(SEARCH_COST - 1)


def test_search_cache_expires_after_ttl() -> None:
    timer = _Timer()
    tracker = QuotaTracker(daily_limit=1000, today=_Day(), cache_ttl=900, timer=timer)
    tracker.set_cached_search("q", "result")

    timer.now = 899
    assert tracker.get_cached_search("q") == "result"

    timer.now = 901
    assert tracker.get_cached_search("q") is None


def test_concurrent_increments_are_not_lost() -> None:
    tracker = QuotaTracker(daily_limit=1_000_000, today=_Day())

    def worker() -> None:
        for _ in range(500):
            tracker.record_usage(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert tracker.status().used == 4000


def test_reset_clears_usage() -> None:
    tracker = QuotaTracker(daily_limit=1000, today=_Day())
    tracker.record_usage(700)

    tracker.reset()

    assert tracker.status().used == 0
