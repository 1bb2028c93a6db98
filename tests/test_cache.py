"""Tests for the query cache and the cached reader decorator."""

from datetime import datetime, timedelta

from reti_dashboard.data.cache import QueryCache, QueryPolicy, cached, query_key


class Reader:
    def __init__(self, cache):
        self.cache = cache
        self.calls = 0

    @cached("asset")
    async def get(self, asset_id, view="brief"):
        self.calls += 1
        return {"id": asset_id, "view": view}


class TestQueryKey:
    def test_params_are_order_independent(self):
        assert query_key("nfd", "x", view="full", a=1) == query_key("nfd", "x", a=1, view="full")

    def test_distinct_identifiers(self):
        assert query_key("asset", 1) != query_key("asset", 2)


class TestQueryCache:
    def test_set_and_get(self):
        cache = QueryCache()
        cache.set(query_key("asset", 1), "usdc")
        assert cache.get(query_key("asset", 1)) == "usdc"
        assert cache.contains(query_key("asset", 1))

    def test_expired_entry_is_dropped(self):
        cache = QueryCache(policies={"asset": QueryPolicy(stale_time=60)})
        key = query_key("asset", 1)
        cache.set(key, "usdc")
        entry = cache.lookup(key)
        cache._cache[key] = type(entry)(
            value=entry.value,
            fetched_at=entry.fetched_at,
            expires_at=datetime.now() - timedelta(seconds=1),
        )

        assert cache.get(key) is None
        assert cache.size == 0

    def test_policy_without_stale_time_never_expires(self):
        cache = QueryCache(policies={"mbr": QueryPolicy(stale_time=None)})
        cache.set(query_key("mbr"), 1)
        assert cache.lookup(query_key("mbr")).expires_at is None

    def test_refetch_interval_bounds_ttl(self):
        policy = QueryPolicy(stale_time=None, refetch_interval=30)
        assert policy.ttl == 30

    def test_lru_eviction(self):
        cache = QueryCache(max_size=2)
        cache.set(query_key("asset", 1), "a")
        cache.set(query_key("asset", 2), "b")
        cache.get(query_key("asset", 1))
        cache.set(query_key("asset", 3), "c")

        assert cache.contains(query_key("asset", 1))
        assert not cache.contains(query_key("asset", 2))
        assert cache.contains(query_key("asset", 3))

    def test_invalidate_by_prefix(self):
        cache = QueryCache()
        cache.set(query_key("validator-state", 1), "s1")
        cache.set(query_key("validator-state", 2), "s2")
        cache.set(query_key("validator-pools", 1), "p1")

        assert cache.invalidate("validator-state", 1) == 1
        assert not cache.contains(query_key("validator-state", 1))
        assert cache.contains(query_key("validator-state", 2))

        assert cache.invalidate("validator-state") == 1
        assert cache.contains(query_key("validator-pools", 1))

    def test_cleanup_expired(self):
        cache = QueryCache(policies={"asset": QueryPolicy(stale_time=0)})
        cache.set(query_key("asset", 1), "a")
        assert cache.cleanup_expired() == 1


class TestCachedDecorator:
    async def test_second_call_served_from_cache(self):
        reader = Reader(QueryCache())
        first = await reader.get(5)
        second = await reader.get(5)

        assert first == second
        assert reader.calls == 1

    async def test_params_are_part_of_the_key(self):
        reader = Reader(QueryCache())
        await reader.get(5)
        await reader.get(5, view="full")

        assert reader.calls == 2
