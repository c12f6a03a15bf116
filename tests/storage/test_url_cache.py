import asyncio

import pytest

from storyclip.config.config import get_default_config
from storyclip.core.errors import SigningFailed
from storyclip.storage.url_cache import SignedUrlCache

TTLS = {"user-library": 86400, "workspace-temp": 3600}
MARGINS = {"user-library": 600, "workspace-temp": 120}


def _cache(signer, clock):
    return SignedUrlCache(signer, ttl_seconds=TTLS, safety_margin_seconds=MARGINS, clock=clock)


def test_cold_miss_signs_once_then_serves_from_cache(fake_signer_cls, clock):
    signer = fake_signer_cls()

    async def main():
        cache = _cache(signer, clock)
        first = await cache.get("clips/a.mp4", "workspace-temp")
        second = await cache.get("clips/a.mp4", "workspace-temp")
        return cache, first, second

    cache, first, second = asyncio.run(main())
    assert first == second
    assert signer.calls == [("workspace-temp", "clips/a.mp4", 3600)]
    assert cache.entry("clips/a.mp4", "workspace-temp").expires_at == clock.now + 3600


def test_concurrent_callers_share_one_sign(fake_signer_cls, clock):
    signer = fake_signer_cls(delay=0.01)

    async def main():
        cache = _cache(signer, clock)
        return await asyncio.gather(*(cache.get("lib/hero.png", "user-library") for _ in range(5)))

    urls = asyncio.run(main())
    assert len(signer.calls) == 1
    assert len(set(urls)) == 1
    assert signer.calls[0][2] == 86400


def test_inside_margin_returns_cached_and_refreshes_in_background(fake_signer_cls, clock):
    signer = fake_signer_cls()

    async def main():
        cache = _cache(signer, clock)
        cache.prime("clips/a.mp4", "workspace-temp", "https://cdn.example.com/old", clock.now + 60)
        served = await cache.get("clips/a.mp4", "workspace-temp")
        assert signer.calls == []
        await asyncio.sleep(0.01)
        return cache, served

    cache, served = asyncio.run(main())
    assert served == "https://cdn.example.com/old"
    assert len(signer.calls) == 1
    entry = cache.entry("clips/a.mp4", "workspace-temp")
    assert entry.url != "https://cdn.example.com/old"
    assert entry.expires_at == clock.now + 3600
    assert not entry.refreshing


def test_failed_refresh_falls_back_to_stale_url(fake_signer_cls, clock):
    signer = fake_signer_cls(fail=True)

    async def main():
        cache = _cache(signer, clock)
        cache.prime("clips/a.mp4", "workspace-temp", "https://cdn.example.com/stale", clock.now - 5)
        stale = await cache.get("clips/a.mp4", "workspace-temp")
        cold = await cache.get("clips/b.mp4", "workspace-temp")
        with pytest.raises(SigningFailed):
            await cache.refresh("clips/b.mp4", "workspace-temp")
        refreshed = await cache.refresh("clips/a.mp4", "workspace-temp")
        return stale, cold, refreshed

    stale, cold, refreshed = asyncio.run(main())
    assert stale == "https://cdn.example.com/stale"
    assert cold is None
    assert refreshed == "https://cdn.example.com/stale"


def test_absolute_and_empty_paths(fake_signer_cls, clock):
    signer = fake_signer_cls()

    async def main():
        cache = _cache(signer, clock)
        return (
            await cache.get("https://cdn.example.com/public.png", "user-library"),
            await cache.get("", "user-library"),
            await cache.get("   ", "user-library"),
        )

    assert asyncio.run(main()) == ("https://cdn.example.com/public.png", None, None)
    assert signer.calls == []


def test_bucket_prefix_and_slashes_share_a_key(fake_signer_cls, clock):
    signer = fake_signer_cls()

    async def main():
        cache = _cache(signer, clock)
        a = await cache.get("/user-library/u1/cat.png", "user-library")
        b = await cache.get("u1/cat.png", "user-library")
        return a, b

    a, b = asyncio.run(main())
    assert a == b
    assert signer.calls == [("user-library", "u1/cat.png", 86400)]


def test_unknown_bucket_uses_defaults(fake_signer_cls, clock):
    cache = SignedUrlCache(fake_signer_cls(), clock=clock)
    assert cache.ttl_for("scratch") == 3600
    assert cache.margin_for("scratch") == 600


def test_sweep_refreshes_only_entries_near_expiry(fake_signer_cls, clock):
    signer = fake_signer_cls()

    async def main():
        cache = _cache(signer, clock)
        cache.prime("fresh.png", "user-library", "https://cdn.example.com/fresh", clock.now + 5000)
        cache.prime("soon.png", "user-library", "https://cdn.example.com/soon", clock.now + 100)
        cache.prime("gone.png", "workspace-temp", "https://cdn.example.com/gone", clock.now - 1)
        count = await cache.sweep()
        return cache, count

    cache, count = asyncio.run(main())
    assert count == 2
    assert sorted(path for _, path, _ in signer.calls) == ["gone.png", "soon.png"]
    assert cache.entry("fresh.png", "user-library").url == "https://cdn.example.com/fresh"


def test_preload_and_context_manager(fake_signer_cls, clock):
    signer = fake_signer_cls()

    async def main():
        async with _cache(signer, clock) as cache:
            assert cache._sweeper is not None
            await cache.preload(["a.png", "b.png", "a.png"], "user-library")
        assert cache._sweeper is None

    asyncio.run(main())
    assert sorted(path for _, path, _ in signer.calls) == ["a.png", "b.png"]


def test_from_config(fake_signer_cls):
    cache = SignedUrlCache.from_config(
        fake_signer_cls(),
        {"sign_ttl_seconds": {"user-library": 10}, "default_sign_ttl_seconds": 20, "max_concurrent_signs": 2},
    )
    assert cache.ttl_for("user-library") == 10
    assert cache.ttl_for("other") == 20


def test_sweep_ticks_keep_short_lived_entries_fresh(fake_signer_cls, clock):
    signer = fake_signer_cls()
    start = clock.now

    async def main():
        cache = SignedUrlCache.from_config(signer, get_default_config())
        cache.clock = clock
        cache.prime("renders/r.mp4", "workspace-temp", "https://cdn.example.com/first", start + 3500)
        refreshed = 0
        for tick in range(0, 3361, int(cache.sweep_interval_seconds)):
            clock.now = start + tick
            refreshed += await cache.sweep()
        clock.now = start + 3550
        calls_before_read = len(signer.calls)
        url = await cache.get("renders/r.mp4", "workspace-temp")
        return cache, refreshed, calls_before_read, url

    cache, refreshed, calls_before_read, url = asyncio.run(main())
    assert refreshed == 1
    assert len(signer.calls) == calls_before_read
    entry = cache.entry("renders/r.mp4", "workspace-temp")
    assert entry.expires_at > clock.now
    assert url == entry.url != "https://cdn.example.com/first"
