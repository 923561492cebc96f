"""Unit tests for the in-memory SimpleTTLCache."""

import threading

from admission.utils.simple_cache import SimpleTTLCache, build_cache_key


class FakeTime:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def test_build_cache_key_is_stable_and_distinguishes_none() -> None:
    key1 = build_cache_key("user-1", "admin", "1.2.3.4", None)
    key2 = build_cache_key("user-1", "admin", "1.2.3.4", None)
    key3 = build_cache_key("user-1", "admin", "1.2.3.4", "")

    assert key1 == key2
    assert key1 != key3
    assert len(key1) == 64


def test_set_and_get_updates_hit_miss_counters() -> None:
    cache = SimpleTTLCache(ttl_seconds=10)

    assert cache.get("missing") is None

    cache.set("key", {"limit": 10})

    assert cache.get("key") == {"limit": 10}

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_get_default_allows_caching_none() -> None:
    cache = SimpleTTLCache(ttl_seconds=10)
    sentinel = object()

    cache.set("no-policy", None)

    assert cache.get("no-policy", sentinel) is None
    assert cache.get("other", sentinel) is sentinel


def test_expired_entry_is_evicted() -> None:
    fake_time = FakeTime()
    cache = SimpleTTLCache(ttl_seconds=5, clock=fake_time)
    cache.set("key", {"data": True})

    fake_time.advance(6)

    assert cache.get("key") is None
    assert cache.stats()["evictions"] == 1


def test_zero_ttl_disables_caching() -> None:
    cache = SimpleTTLCache(ttl_seconds=0)
    cache.set("key", 1)

    assert cache.get("key") is None
    assert len(cache) == 0


def test_lru_eviction_removes_least_recently_used() -> None:
    cache = SimpleTTLCache(ttl_seconds=100, max_entries=2)
    cache.set("a", {"v": 1})
    cache.set("b", {"v": 2})

    # Access "a" so that "b" becomes least recently used
    assert cache.get("a") == {"v": 1}

    cache.set("c", {"v": 3})

    assert cache.get("a") == {"v": 1}
    assert cache.get("c") == {"v": 3}
    assert cache.get("b") is None


def test_invalidate_tag_drops_only_tagged_entries() -> None:
    cache = SimpleTTLCache(ttl_seconds=100)
    cache.set(("login", None), "p1", tags=[("limit_key", "login")])
    cache.set(("login", "production"), "p2", tags=[("limit_key", "login")])
    cache.set(("api_user", None), "p3", tags=[("limit_key", "api_user")])

    removed = cache.invalidate_tag(("limit_key", "login"))

    assert removed == 2
    assert cache.get(("login", None)) is None
    assert cache.get(("login", "production")) is None
    assert cache.get(("api_user", None)) == "p3"
    assert cache.invalidate_tag(("limit_key", "login")) == 0


def test_overwrite_moves_entry_between_tags() -> None:
    cache = SimpleTTLCache(ttl_seconds=100)
    cache.set("k", 1, tags=["old"])
    cache.set("k", 2, tags=["new"])

    assert cache.invalidate_tag("old") == 0
    assert cache.get("k") == 2
    assert cache.invalidate_tag("new") == 1


def test_purge_expired_and_clear() -> None:
    fake_time = FakeTime()
    cache = SimpleTTLCache(ttl_seconds=5, clock=fake_time)
    cache.set("a", 1)
    fake_time.advance(3)
    cache.set("b", 2)
    fake_time.advance(3)

    assert cache.purge_expired() == 1
    assert len(cache) == 1

    cache.clear()
    stats = cache.stats()
    assert stats["entries"] == 0
    assert stats["hits"] == 0
    assert stats["evictions"] == 0


def test_thread_safety_under_concurrent_sets() -> None:
    cache = SimpleTTLCache(ttl_seconds=30, max_entries=None)
    total_keys = 50

    def _writer(idx: int) -> None:
        cache.set(f"k-{idx}", {"v": idx}, tags=[idx % 5])

    threads = [threading.Thread(target=_writer, args=(i,)) for i in range(total_keys)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.stats()["entries"] == total_keys
    assert cache.get("k-0") == {"v": 0}
    assert cache.invalidate_tag(0) == 10
