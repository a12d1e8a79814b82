import asyncio
from datetime import datetime, timedelta, timezone

from leadenrich.cache.layer import CacheBackend, CacheLayer, InMemoryCacheBackend, enrichment_key
from leadenrich.schemas import LeadRecord


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class BrokenBackend(CacheBackend):
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("redis down")

    async def delete(self, key):
        raise ConnectionError("redis down")

    async def keys(self, prefix=""):
        raise ConnectionError("redis down")

    async def ttl(self, key):
        raise ConnectionError("redis down")

    async def expire(self, key, ttl_seconds):
        raise ConnectionError("redis down")


def test_set_then_get_round_trip():
    cache = CacheLayer(InMemoryCacheBackend())
    assert asyncio.run(cache.set("enrichment:1", {"sources": ["property"]})) is True
    assert asyncio.run(cache.get("enrichment:1")) == {"sources": ["property"]}
    assert asyncio.run(cache.exists("enrichment:1")) is True


def test_expired_entry_is_a_miss_and_purged():
    clock = Clock()
    cache = CacheLayer(InMemoryCacheBackend(), default_ttl=60, clock=clock)
    asyncio.run(cache.set("enrichment:1", {"v": 1}))

    clock.now += timedelta(seconds=61)
    assert asyncio.run(cache.get("enrichment:1")) is None
    assert asyncio.run(cache.backend.get("enrichment:1")) is None
    stats = asyncio.run(cache.get_stats())
    assert stats["misses"] == 1
    assert stats["hits"] == 0


def test_backend_errors_are_swallowed():
    cache = CacheLayer(BrokenBackend())
    assert asyncio.run(cache.get("k")) is None
    assert asyncio.run(cache.set("k", {"v": 1})) is False
    assert asyncio.run(cache.delete("k")) is False
    assert asyncio.run(cache.keys()) == []
    assert asyncio.run(cache.get_ttl("k")) == -2
    assert cache.errors >= 5


def test_mget_mset_and_clear_prefix():
    cache = CacheLayer(InMemoryCacheBackend())
    asyncio.run(cache.mset({"enrichment:1": 1, "enrichment:2": 2, "health:providers": {}}))

    assert asyncio.run(cache.mget(["enrichment:1", "enrichment:3"])) == {"enrichment:1": 1, "enrichment:3": None}
    assert asyncio.run(cache.clear_prefix("enrichment:")) == 2
    assert asyncio.run(cache.keys("health:")) == ["health:providers"]


def test_extend_ttl_and_get_ttl():
    cache = CacheLayer(InMemoryCacheBackend(), default_ttl=60)
    asyncio.run(cache.set("enrichment:1", {"v": 1}))
    assert 0 < asyncio.run(cache.get_ttl("enrichment:1")) <= 60

    assert asyncio.run(cache.extend_ttl("enrichment:1", 7200)) is True
    assert asyncio.run(cache.get_ttl("enrichment:1")) > 3600
    assert asyncio.run(cache.extend_ttl("enrichment:missing", 10)) is False


def test_warm_loads_enriched_leads_only():
    cache = CacheLayer(InMemoryCacheBackend())
    leads = [LeadRecord(id=1, enrichment_data={"status": "completed"}), LeadRecord(id=2)]
    assert asyncio.run(cache.warm(leads)) is True
    assert asyncio.run(cache.keys()) == [enrichment_key(1)]


def test_get_with_fallback_sources():
    cache = CacheLayer(InMemoryCacheBackend())
    calls = []

    async def loader():
        calls.append(1)
        return {"status": "ok"}

    first = asyncio.run(cache.get_with_fallback("health:providers", loader, ttl=30))
    second = asyncio.run(cache.get_with_fallback("health:providers", loader, ttl=30))
    assert first == {"data": {"status": "ok"}, "source": "database"}
    assert second["source"] == "cache"
    assert len(calls) == 1


def test_get_with_fallback_retries_once_without_caching():
    cache = CacheLayer(InMemoryCacheBackend())
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise TimeoutError("slow")
        return {"status": "ok"}

    result = asyncio.run(cache.get_with_fallback("k", flaky))
    assert result == {"data": {"status": "ok"}, "source": "database"}
    assert asyncio.run(cache.get("k")) is None


def test_get_with_fallback_reports_error_after_retry():
    cache = CacheLayer(InMemoryCacheBackend())

    async def broken():
        raise RuntimeError("db down")

    result = asyncio.run(cache.get_with_fallback("k", broken))
    assert result["source"] == "error"
    assert result["data"] is None


def test_get_with_fallback_none_is_not_cached():
    cache = CacheLayer(InMemoryCacheBackend())

    async def empty():
        return None

    assert asyncio.run(cache.get_with_fallback("k", empty)) == {"data": None, "source": "none"}
