"""Tests for the in-process caches."""

import asyncio

import pytest

from dealfeed.services.cache_service import SnapshotStore, TokenCache, TTLCache


class TestTTLCache:
    """Tests for the lazily refreshed single-value cache."""

    async def test_value_reused_until_ttl_expires(self, fake_clock):
        cache = TTLCache("test", ttl_seconds=300, clock=fake_clock)
        loads = []

        async def loader():
            loads.append(fake_clock.now)
            return len(loads)

        assert await cache.get_or_load(loader) == 1
        fake_clock.advance(299)
        assert await cache.get_or_load(loader) == 1
        fake_clock.advance(2)
        assert await cache.get_or_load(loader) == 2
        assert len(loads) == 2

    async def test_concurrent_callers_share_one_load(self, fake_clock):
        cache = TTLCache("test", ttl_seconds=60, clock=fake_clock)
        calls = 0

        async def slow_loader():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "rows"

        results = await asyncio.gather(*(cache.get_or_load(slow_loader) for _ in range(5)))

        assert results == ["rows"] * 5
        assert calls == 1

    async def test_failed_load_keeps_nothing_and_propagates(self, fake_clock):
        cache = TTLCache("test", ttl_seconds=60, clock=fake_clock)

        async def failing():
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            await cache.get_or_load(failing)
        assert cache.age_seconds() is None

    async def test_invalidate_forces_reload(self, fake_clock):
        cache = TTLCache("test", ttl_seconds=60, clock=fake_clock)
        values = iter(["a", "b"])

        async def loader():
            return next(values)

        assert await cache.get_or_load(loader) == "a"
        cache.invalidate()
        assert await cache.get_or_load(loader) == "b"

    async def test_refresh_replaces_value_inside_ttl(self, fake_clock):
        cache = TTLCache("test", ttl_seconds=300, clock=fake_clock)
        values = iter(["a", "b"])

        async def loader():
            return next(values)

        assert await cache.get_or_load(loader) == "a"
        fake_clock.advance(10)
        assert await cache.refresh(loader) == "b"
        assert await cache.get_or_load(loader) == "b"
        assert cache.age_seconds() == 0

    async def test_failed_refresh_keeps_previous_value(self, fake_clock):
        cache = TTLCache("test", ttl_seconds=300, clock=fake_clock)

        async def loader():
            return ["row"]

        async def failing():
            raise RuntimeError("upstream down")

        await cache.get_or_load(loader)
        with pytest.raises(RuntimeError):
            await cache.refresh(failing)

        assert await cache.get_or_load(failing) == ["row"]


class TestTokenCache:
    """Tests for bearer token caching."""

    def test_token_expires_before_advertised_lifetime(self, fake_clock):
        tokens = TokenCache("bg", margin_seconds=600, clock=fake_clock)
        tokens.store("tok", lifetime_seconds=3600)

        fake_clock.advance(2999)
        assert tokens.get() == "tok"
        fake_clock.advance(2)
        assert tokens.get() is None

    def test_short_lifetime_kept_at_least_a_minute(self, fake_clock):
        tokens = TokenCache("bg", margin_seconds=600, clock=fake_clock)
        tokens.store("tok", lifetime_seconds=100)

        fake_clock.advance(59)
        assert tokens.get() == "tok"

    def test_invalidate(self, fake_clock):
        tokens = TokenCache("bg", clock=fake_clock)
        tokens.store("tok", 3600)
        tokens.invalidate()
        assert tokens.get() is None


class TestSnapshotStore:
    """Tests for last-known-good response storage."""

    def test_exact_key_preferred_then_latest_of_feed(self, fake_clock):
        store = SnapshotStore(clock=fake_clock)
        store.save("search", "q=drill", '{"count":1}', '"a"')
        fake_clock.advance(10)
        store.save("search", "q=lamp", '{"count":2}', '"b"')

        assert store.get("search", "q=drill").etag == '"a"'
        assert store.get("search", "q=unknown").etag == '"b"'
        assert store.get("coupons") is None

    def test_feeds_reports_newest_timestamp(self, fake_clock):
        store = SnapshotStore(clock=fake_clock)
        store.save("coupons", "", "{}", '"x"')
        assert store.has("coupons")
        assert store.feeds() == {"coupons": fake_clock.now}

        store.clear()
        assert not store.has("coupons")

    def test_keys_per_feed_are_capped(self, fake_clock):
        store = SnapshotStore(max_per_feed=3, clock=fake_clock)
        for n in range(10000):
            store.save("search", f"q=item{n}", f'{{"n":{n}}}', f'"{n}"')
        store.save("coupons", "", "{}", '"c"')

        assert store.size("search") == 3
        assert store.size("coupons") == 1
        assert store.get("search", "q=item9998").etag == '"9998"'
        # Evicted keys fall back to the newest snapshot of the feed
        assert store.get("search", "q=item0").etag == '"9999"'

    def test_resaving_a_key_protects_it_from_eviction(self, fake_clock):
        store = SnapshotStore(max_per_feed=2, clock=fake_clock)
        store.save("search", "q=a", "{}", '"a1"')
        store.save("search", "q=b", "{}", '"b"')
        store.save("search", "q=a", "{}", '"a2"')
        store.save("search", "q=c", "{}", '"c"')

        assert store.get("search", "q=a").etag == '"a2"'
        assert store.get("search", "q=b").etag == '"c"'
