import asyncio
import time
from io import BytesIO

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from PIL import Image

from orpheus.lib import config, cover_art
from orpheus.lib.cover_art import MISS, CoverArtResolver, CoverCache, cache_key


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def png_bytes(color="red"):
    buf = BytesIO()
    Image.new("RGB", (8, 8), color).save(buf, "PNG")
    return buf.getvalue()


# ── CoverCache ──

def test_cache_key_is_case_and_whitespace_insensitive():
    assert cache_key("  The Band ", "Album") == cache_key("the band", "ALBUM ")


def test_cache_expires_after_ttl():
    clock = FakeClock()
    cache = CoverCache(max_size=10, ttl=60, clock=clock)
    cache.put(("a", "b"), "cover")
    clock.now += 59
    assert cache.get(("a", "b")) == "cover"
    clock.now += 2
    assert cache.get(("a", "b")) is MISS
    assert len(cache) == 0


def test_cache_remembers_negative_results():
    cache = CoverCache()
    cache.put(("a", "b"), None)
    assert cache.get(("a", "b")) is None
    assert ("a", "b") in cache


def test_cache_evicts_oldest_entry_when_full():
    clock = FakeClock()
    cache = CoverCache(max_size=2, ttl=600, clock=clock)
    cache.put("first", "1")
    clock.now += 1
    cache.put("second", "2")
    clock.now += 1
    cache.put("third", "3")

    assert "first" not in cache
    assert cache.get("second") == "2"
    assert cache.get("third") == "3"
    assert len(cache) == 2


def test_cache_overwrite_refreshes_timestamp():
    clock = FakeClock()
    cache = CoverCache(max_size=2, ttl=600, clock=clock)
    cache.put("first", "1")
    clock.now += 1
    cache.put("second", "2")
    clock.now += 1
    cache.put("first", "1b")
    clock.now += 1
    cache.put("third", "3")

    assert "second" not in cache
    assert cache.get("first") == "1b"


# ── CoverArtResolver ──

def counting_lookup(resolver, result="data:image/jpeg;base64,AAAA", delay=0.0):
    calls = []

    async def lookup(artist, album, title):
        calls.append((artist, album, title))
        if delay:
            await asyncio.sleep(delay)
        return result

    resolver._lookup = lookup
    return calls


def test_disabled_resolver_returns_none():
    async def scenario():
        resolver = CoverArtResolver(enabled=False)
        calls = counting_lookup(resolver)
        assert await resolver.fetch_cover_art("Band", "Album") is None
        assert calls == []

    asyncio.run(scenario())


def test_lookup_needs_artist_and_album_or_title():
    async def scenario():
        resolver = CoverArtResolver()
        calls = counting_lookup(resolver)
        assert await resolver.fetch_cover_art("", "Album") is None
        assert await resolver.fetch_cover_art("Band") is None
        assert calls == []

    asyncio.run(scenario())


def test_results_are_cached():
    async def scenario():
        resolver = CoverArtResolver()
        calls = counting_lookup(resolver)
        first = await resolver.fetch_cover_art("Band", "Album")
        second = await resolver.fetch_cover_art("band", "album ")
        assert first == second == "data:image/jpeg;base64,AAAA"
        assert len(calls) == 1

    asyncio.run(scenario())


def test_title_is_used_without_album():
    async def scenario():
        resolver = CoverArtResolver()
        calls = counting_lookup(resolver)
        await resolver.fetch_cover_art("Band", None, "Song")
        assert calls == [("Band", None, "Song")]
        assert cache_key("Band", "Song") in resolver.cache

    asyncio.run(scenario())


def test_concurrent_lookups_share_one_request():
    async def scenario():
        resolver = CoverArtResolver()
        calls = counting_lookup(resolver, delay=0.05)
        results = await asyncio.gather(
            *(resolver.fetch_cover_art("Band", "Album") for _ in range(5)))
        assert set(results) == {"data:image/jpeg;base64,AAAA"}
        assert len(calls) == 1

    asyncio.run(scenario())


def test_failures_are_cached_as_none():
    async def scenario():
        resolver = CoverArtResolver()
        calls = []

        async def broken(artist, album, title):
            calls.append(artist)
            raise RuntimeError("MusicBrainz is down")

        resolver._lookup = broken
        assert await resolver.fetch_cover_art("Band", "Album") is None
        assert await resolver.fetch_cover_art("Band", "Album") is None
        assert len(calls) == 1

    asyncio.run(scenario())


def test_search_timeout_yields_none(monkeypatch):
    def slow_search(artist, album, title):
        time.sleep(0.3)
        return ["mbid"]

    monkeypatch.setattr(cover_art, "_musicbrainz_release_ids", slow_search)

    async def scenario():
        resolver = CoverArtResolver(timeout=0.05)
        assert await resolver.fetch_cover_art("Band", "Album") is None
        assert cache_key("Band", "Album") in resolver.cache

    asyncio.run(scenario())


def test_candidates_are_tried_in_order():
    async def scenario():
        resolver = CoverArtResolver()
        probed = []

        async def search(artist, album, title):
            return ["r1", "r2", "r3", "r4"]

        async def front_cover(mbid):
            probed.append(mbid)
            if mbid == "r1":
                raise aiohttp.ClientConnectionError("reset")
            if mbid == "r2":
                return None
            return f"cover-{mbid}"

        resolver._search = search
        resolver._front_cover = front_cover
        assert await resolver.fetch_cover_art("Band", "Album") == "cover-r3"
        assert probed == ["r1", "r2", "r3"]

    asyncio.run(scenario())


def test_release_search_by_album(monkeypatch):
    seen = {}

    def search_releases(**kwargs):
        seen.update(kwargs)
        return {"release-list": [{"id": "a"}, {"title": "no id"}, {"id": "b"}]}

    monkeypatch.setattr(cover_art.musicbrainzngs, "search_releases", search_releases)
    assert cover_art._musicbrainz_release_ids("Band", "Album", "Song") == ["a", "b"]
    assert seen["artist"] == "Band"
    assert seen["release"] == "Album"


def test_recording_search_collects_unique_releases(monkeypatch):
    def search_recordings(**kwargs):
        assert kwargs["recording"] == "Song"
        return {"recording-list": [
            {"release-list": [{"id": "a"}, {"id": "b"}]},
            {"release-list": [{"id": "a"}, {"id": "c"}]},
        ]}

    monkeypatch.setattr(cover_art.musicbrainzngs, "search_recordings", search_recordings)
    assert cover_art._musicbrainz_release_ids("Band", None, "Song") == ["a", "b", "c"]


def test_front_cover_is_fetched_and_inlined(monkeypatch):
    async def front(request):
        if request.match_info["mbid"] == "missing":
            return web.Response(status=404)
        return web.Response(body=png_bytes(), content_type="image/png")

    async def scenario():
        app = web.Application()
        app.router.add_get("/release/{mbid}/front-500", front)
        server = TestServer(app)
        await server.start_server()
        monkeypatch.setattr(cover_art, "COVER_ART_ARCHIVE",
                            f"http://{server.host}:{server.port}")
        resolver = CoverArtResolver()
        try:
            cover = await resolver._front_cover("some-release")
            missing = await resolver._front_cover("missing")
        finally:
            await resolver.close()
            await server.close()
        assert cover.startswith("data:image/jpeg;base64,")
        assert missing is None

    asyncio.run(scenario())


def test_from_config_reads_cover_art_section(monkeypatch):
    monkeypatch.setattr(config, "_config", {
        "cover_art": {"enabled": False, "inline": False, "timeout": 3, "ttl": 60,
                      "max_entries": 5},
    })
    resolver = CoverArtResolver.from_config()
    assert resolver.enabled is False
    assert resolver.inline is False
    assert resolver.timeout == 3.0
    assert resolver.cache.ttl == 60.0
    assert resolver.cache.max_size == 5


@pytest.mark.parametrize("album, title, expected", [
    ("Album", "Song", ("band", "album")),
    (None, "Song", ("band", "song")),
])
def test_cache_key_prefers_album(album, title, expected):
    async def scenario():
        resolver = CoverArtResolver()
        counting_lookup(resolver, result=None)
        await resolver.fetch_cover_art("Band", album, title)
        assert expected in resolver.cache

    asyncio.run(scenario())


def test_expired_entry_triggers_new_lookup():
    async def scenario():
        clock = FakeClock()
        resolver = CoverArtResolver(ttl=60, clock=clock)
        calls = counting_lookup(resolver)
        await resolver.fetch_cover_art("Band", None, "Song")
        clock.now += 30
        await resolver.fetch_cover_art("Band", None, "Song")
        assert len(calls) == 1
        clock.now += 31
        await resolver.fetch_cover_art("Band", None, "Song")
        assert len(calls) == 2

    asyncio.run(scenario())


def test_close_cancels_inflight_lookup_without_caching():
    async def scenario():
        resolver = CoverArtResolver()
        calls = counting_lookup(resolver, delay=10)
        waiter = asyncio.ensure_future(resolver.fetch_cover_art("Band", "Album"))
        await asyncio.sleep(0.01)
        assert len(calls) == 1

        await resolver.close()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert cache_key("Band", "Album") not in resolver.cache

        counting_lookup(resolver)
        assert await resolver.fetch_cover_art("Band", "Album") == "data:image/jpeg;base64,AAAA"

    asyncio.run(scenario())
