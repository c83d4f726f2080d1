# Orpheus
# Copyright (C) 2024-2026 Orpheus contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Cover art fallback — MusicBrainz search + Cover Art Archive.

Used when the OS media session reports a track without artwork.  Looks up
candidate releases by artist plus album (or artist plus title via the
recording search), then takes the first release that has a front cover.

Every outcome, including "nothing found" and network errors, is cached for
the TTL so a track without artwork does not hammer the APIs on each update.
"""

import asyncio
import logging
import time

import aiohttp
import musicbrainzngs

from .. import __version__
from .artwork import encode_image
from .config import cfg

log = logging.getLogger(__name__)

musicbrainzngs.set_useragent(
    "Orpheus", __version__, "https://github.com/orpheus-overlay/orpheus")

COVER_ART_ARCHIVE = "https://coverartarchive.org"
CACHE_TTL = 30 * 60          # seconds
CACHE_MAX_SIZE = 200
LOOKUP_TIMEOUT = 10          # seconds, per network call
SEARCH_LIMIT = 5
MAX_CANDIDATES = 3           # releases probed for a front cover

MISS = object()


def cache_key(artist: str, album_or_title: str) -> tuple[str, str]:
    return (artist.strip().lower(), album_or_title.strip().lower())


class CoverCache:
    """TTL cache of lookup results, evicting the oldest entry when full.

    Values may be None ("no cover"); ``get`` returns ``MISS`` for keys that
    are absent or expired.
    """

    def __init__(self, max_size=CACHE_MAX_SIZE, ttl=CACHE_TTL, clock=time.monotonic):
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[tuple, tuple[str | None, float]] = {}

    def get(self, key):
        entry = self._entries.get(key)
        if entry is None:
            return MISS
        value, stamp = entry
        if self._clock() - stamp > self.ttl:
            del self._entries[key]
            return MISS
        return value

    def put(self, key, value: str | None):
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            # min() keeps the first of equal stamps, i.e. insertion order
            oldest = min(self._entries, key=lambda k: self._entries[k][1])
            del self._entries[oldest]
        self._entries[key] = (value, self._clock())

    def __contains__(self, key):
        return self.get(key) is not MISS

    def __len__(self):
        return len(self._entries)


def _musicbrainz_release_ids(artist: str, album: str | None,
                             title: str | None) -> list[str]:
    """Blocking MusicBrainz search.  Runs in the default executor."""
    if album:
        result = musicbrainzngs.search_releases(
            artist=artist, release=album, limit=SEARCH_LIMIT)
        return [r["id"] for r in result.get("release-list", []) if r.get("id")]

    result = musicbrainzngs.search_recordings(
        artist=artist, recording=title, limit=SEARCH_LIMIT)
    ids = []
    for recording in result.get("recording-list", []):
        for release in recording.get("release-list", []):
            mbid = release.get("id")
            if mbid and mbid not in ids:
                ids.append(mbid)
    return ids


class CoverArtResolver:

    def __init__(self, *, enabled=True, inline=True, timeout=LOOKUP_TIMEOUT,
                 ttl=CACHE_TTL, max_entries=CACHE_MAX_SIZE,
                 session: aiohttp.ClientSession | None = None,
                 clock=time.monotonic):
        self.enabled = enabled
        self.inline = inline
        self.timeout = timeout
        self._cache = CoverCache(max_size=max_entries, ttl=ttl, clock=clock)
        self._inflight: dict[tuple, asyncio.Future] = {}
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls) -> "CoverArtResolver":
        return cls(
            enabled=bool(cfg("cover_art", "enabled", default=True)),
            inline=bool(cfg("cover_art", "inline", default=True)),
            timeout=float(cfg("cover_art", "timeout", default=LOOKUP_TIMEOUT)),
            ttl=float(cfg("cover_art", "ttl", default=CACHE_TTL)),
            max_entries=int(cfg("cover_art", "max_entries", default=CACHE_MAX_SIZE)),
        )

    @property
    def cache(self) -> CoverCache:
        return self._cache

    async def fetch_cover_art(self, artist: str, album: str | None = None,
                              title: str | None = None) -> str | None:
        """Return a cover URL (data URI or remote URL) or None.

        Lookup failures are cached as None like any other result.  A lookup
        cancelled by close() raises CancelledError.
        """
        if not self.enabled:
            return None
        name = album or title
        if not artist or not name:
            return None

        key = cache_key(artist, name)
        cached = self._cache.get(key)
        if cached is not MISS:
            log.debug("Cover cache hit for %s / %s", artist, name)
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._lookup_and_cache(key, artist, album, title))
            self._inflight[key] = task
            task.add_done_callback(lambda _t: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def close(self):
        """Cancel in-flight lookups, then close the HTTP session.

        Cancelled lookups leave nothing in the cache, so the same track is
        looked up again after a restart.
        """
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()

        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    # ── internals ──

    async def _lookup_and_cache(self, key, artist, album, title) -> str | None:
        # CancelledError (close) propagates without caching
        try:
            cover = await self._lookup(artist, album, title)
        except Exception as e:
            log.debug("Cover lookup failed for %s / %s: %s", artist, album or title, e)
            cover = None
        self._cache.put(key, cover)
        log.debug("Cover lookup for %s / %s: %s", artist, album or title,
                  "found" if cover else "none")
        return cover

    async def _lookup(self, artist, album, title) -> str | None:
        release_ids = await self._search(artist, album, title)
        for mbid in release_ids[:MAX_CANDIDATES]:
            try:
                cover = await self._front_cover(mbid)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.debug("Cover Art Archive request for %s failed: %s", mbid, e)
                continue
            if cover:
                return cover
        return None

    async def _search(self, artist, album, title) -> list[str]:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, _musicbrainz_release_ids, artist, album, title),
            timeout=self.timeout,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _front_cover(self, mbid: str) -> str | None:
        url = f"{COVER_ART_ARCHIVE}/release/{mbid}/front-500"
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        if not self.inline:
            async with session.head(url, timeout=timeout, allow_redirects=True) as resp:
                return url if resp.status == 200 else None

        async with session.get(url, timeout=timeout) as resp:
            if resp.status != 200:
                log.debug("No front cover for release %s (HTTP %d)", mbid, resp.status)
                return None
            image_bytes = await resp.read()
        return await encode_image(image_bytes)
