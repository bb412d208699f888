import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from crawlbox.cache.result_cache import ResultCache
from crawlbox.models import CrawlResult


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_result(url: str) -> CrawlResult:
    return CrawlResult(url=url, status_code=200, title="t", content="c", html="<p>c</p>")


def test_get_counts_hits_and_misses():
    cache = ResultCache(max_size=10, ttl=60, clock=FakeClock())
    cache.set("https://a.test/", make_result("https://a.test/"))

    assert cache.get("https://a.test/").url == "https://a.test/"
    assert cache.get("https://b.test/") is None

    stats = cache.get_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5


def test_expired_entry_is_removed_on_lookup():
    clock = FakeClock()
    cache = ResultCache(max_size=10, ttl=60, clock=clock)
    cache.set("https://a.test/", make_result("https://a.test/"))

    clock.advance(61)

    assert cache.get("https://a.test/") is None
    assert len(cache) == 0
    assert cache.get_stats()["expirations"] == 1
    assert cache.get("https://a.test/") is None
    assert cache.get_stats()["expirations"] == 1


def test_has_does_not_touch_counters():
    cache = ResultCache(max_size=10, ttl=60, clock=FakeClock())
    cache.set("https://a.test/", make_result("https://a.test/"))

    assert cache.has("https://a.test/")
    assert "https://missing.test/" not in cache
    assert cache.get_stats()["hits"] == 0
    assert cache.get_stats()["misses"] == 0


def test_capacity_evicts_oldest_entry():
    clock = FakeClock()
    cache = ResultCache(max_size=2, ttl=600, clock=clock)

    cache.set("https://1.test/", make_result("https://1.test/"))
    clock.advance(1)
    cache.set("https://2.test/", make_result("https://2.test/"))
    clock.advance(1)
    cache.set("https://3.test/", make_result("https://3.test/"))

    assert len(cache) == 2
    assert not cache.has("https://1.test/")
    assert cache.has("https://3.test/")
    assert cache.get_stats()["evictions"] == 1


def test_overwriting_existing_key_does_not_evict():
    cache = ResultCache(max_size=2, ttl=600, clock=FakeClock())
    cache.set("https://1.test/", make_result("https://1.test/"))
    cache.set("https://2.test/", make_result("https://2.test/"))
    cache.set("https://2.test/", make_result("https://2.test/"))

    assert len(cache) == 2
    assert cache.get_stats()["evictions"] == 0


def test_lowering_max_size_trims_oldest_entries():
    clock = FakeClock()
    cache = ResultCache(max_size=5, ttl=600, clock=clock)
    for i in range(5):
        cache.set(f"https://{i}.test/", make_result(f"https://{i}.test/"))
        clock.advance(1)

    cache.update_config(max_size=2)
    assert len(cache) == 2
    assert cache.has("https://3.test/")
    assert cache.has("https://4.test/")

    cache.set("https://5.test/", make_result("https://5.test/"))
    assert len(cache) == 2
    assert not cache.has("https://3.test/")
    assert cache.get_stats()["evictions"] == 4


def test_cleanup_removes_only_expired_entries():
    clock = FakeClock()
    cache = ResultCache(max_size=10, ttl=60, clock=clock)
    cache.set("https://old.test/", make_result("https://old.test/"))
    clock.advance(30)
    cache.set("https://new.test/", make_result("https://new.test/"))
    clock.advance(31)

    removed = cache.cleanup()

    assert removed == 1
    assert cache.has("https://new.test/")
    assert cache.get_stats()["oldest_entry"] == cache.get_stats()["newest_entry"]


def test_clear_and_delete():
    cache = ResultCache(max_size=10, ttl=60, clock=FakeClock())
    cache.set("https://a.test/", make_result("https://a.test/"))
    cache.set("https://b.test/", make_result("https://b.test/"))

    cache.delete("https://a.test/")
    cache.delete("https://never.test/")
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_background_cleanup_runs_periodically():
    clock = FakeClock()
    cache = ResultCache(max_size=10, ttl=1, check_interval=0.01, clock=clock)
    cache.set("https://a.test/", make_result("https://a.test/"))
    clock.advance(5)

    cache.start_cleanup()
    await asyncio.sleep(0.05)
    await cache.stop_cleanup()

    assert len(cache) == 0


@pytest.mark.asyncio
async def test_update_config_restarts_cleanup():
    cache = ResultCache(max_size=10, ttl=60, check_interval=10)
    cache.start_cleanup()

    cache.update_config(max_size=5, check_interval=20)

    assert cache.max_size == 5
    assert cache.check_interval == 20
    assert cache._cleanup_task.running
    await cache.stop_cleanup()
