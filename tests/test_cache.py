from datetime import datetime, timezone

import pytest
import redis

from shortener.cache import CachedLink, RedisLinkCache, ShardedLRUCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def entry(url="https://example.com"):
    return CachedLink(destination_url=url)


def test_lru_evicts_least_recently_used():
    cache = ShardedLRUCache(capacity=2, shards=1, ttl=0)
    cache.put("a", entry("https://a.example"))
    cache.put("b", entry("https://b.example"))
    assert cache.get("a") is not None

    evicted = cache.put("c", entry("https://c.example"))
    assert evicted == "b"
    assert cache.get("b") is None
    assert cache.get("a").destination_url == "https://a.example"
    assert len(cache) == 2


def test_put_existing_key_does_not_evict():
    cache = ShardedLRUCache(capacity=2, shards=1, ttl=0)
    cache.put("a", entry())
    cache.put("b", entry())
    assert cache.put("a", entry("https://new.example")) is None
    assert cache.get("a").destination_url == "https://new.example"


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = ShardedLRUCache(capacity=10, shards=2, ttl=60, clock=clock)
    cache.put("a", entry())
    clock.now = 59
    assert cache.get("a") is not None
    clock.now = 60
    assert cache.get("a") is None


def test_invalidate_and_clear():
    cache = ShardedLRUCache(capacity=100, shards=4)
    for key in ("a", "b", "c"):
        cache.put(key, entry())
    assert cache.invalidate("a")
    assert not cache.invalidate("a")
    assert cache.get("a") is None
    cache.clear()
    assert len(cache) == 0


def test_stale_fill_skipped_after_invalidate():
    cache = ShardedLRUCache(capacity=10, shards=1, ttl=0)
    generation = cache.generation("a")
    cache.invalidate("a")

    cache.put("a", entry("https://stale.example"), generation)
    assert cache.get("a") is None

    cache.put("a", entry("https://fresh.example"), cache.generation("a"))
    assert cache.get("a").destination_url == "https://fresh.example"


def test_capacity_is_bounded_across_shards():
    cache = ShardedLRUCache(capacity=64, shards=8, ttl=0)
    for i in range(1000):
        cache.put(f"code{i}", entry())
    assert len(cache) <= 64


def test_invalid_capacity():
    with pytest.raises(ValueError):
        ShardedLRUCache(capacity=0)


def test_redis_cache_roundtrip(redis_client):
    cache = RedisLinkCache(redis_client, ttl=100)
    expires = datetime(2030, 5, 1, 12, 0, tzinfo=timezone.utc)
    cache.put("abc123", CachedLink("https://example.com/x", expires_at=expires))

    cached = cache.get("abc123")
    assert cached == CachedLink("https://example.com/x", expires_at=expires, deleted=False)
    assert 0 < redis_client.ttl("link:abc123") <= 100


def test_redis_fill_does_not_overwrite(redis_client):
    cache = RedisLinkCache(redis_client)
    cache.put("abc123", CachedLink("https://example.com", deleted=True))
    cache.put("abc123", CachedLink("https://example.com"), only_new=True)
    assert cache.get("abc123").deleted

    cache.put("abc123", CachedLink("https://example.com"))
    assert not cache.get("abc123").deleted


def test_redis_cache_broken_entry(redis_client):
    redis_client.set("link:abc123", "not json")
    assert RedisLinkCache(redis_client).get("abc123") is None


class BrokenRedis:
    def get(self, key):
        raise redis.ConnectionError("down")

    def set(self, key, value, **kwargs):
        raise redis.ConnectionError("down")


def test_redis_errors_are_misses():
    cache = RedisLinkCache(BrokenRedis())
    assert cache.get("abc123") is None
    cache.put("abc123", entry())
