"""
Tests for the injected cache implementations
"""
from pathway_pipeline.core.cache import InMemoryTTLCache, NullCache


def test_null_cache_never_stores():
    c = NullCache()
    c.set("k", 1)
    assert c.get("k") is None


def test_get_and_set():
    c = InMemoryTTLCache()
    assert c.get("k") is None
    c.set("k", [1.0, 2.0])
    assert c.get("k") == [1.0, 2.0]
    assert c.hits == 1 and c.misses == 1


def test_expired_entries_are_misses():
    c = InMemoryTTLCache(default_ttl_sec=60)
    c.set("k", "v", ttl_sec=0)
    assert c.get("k") is None
    assert len(c) == 0


def test_eviction_when_full():
    c = InMemoryTTLCache(max_entries=2)
    c.set("a", 1, ttl_sec=10)
    c.set("b", 2, ttl_sec=100)
    c.set("c", 3, ttl_sec=100)
    assert len(c) == 2
    assert c.get("a") is None
    assert c.get("b") == 2 and c.get("c") == 3


def test_overwrite_does_not_evict():
    c = InMemoryTTLCache(max_entries=1)
    c.set("a", 1)
    c.set("a", 2)
    assert c.get("a") == 2
