# Orpheus
# Copyright (C) 2024-2026 Orpheus contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
BroadcastHub — fans track changes out to every connected overlay over SSE.

Each client gets an SseChannel wrapping its aiohttp StreamResponse.  Writes
to one channel are serialised by a per-channel lock, which also guarantees
that the connect-time snapshot goes out before any live event.

Failure handling: a channel whose write (track or keep-alive ping) fails is
dropped through ``remove()``, the single idempotent removal path shared with
client disconnects and shutdown.  Other channels are unaffected.
"""

import asyncio
import json
import logging
from typing import Callable

from aiohttp import web

from .track import Track

log = logging.getLogger(__name__)

KEEPALIVE_INTERVAL = 15.0  # seconds between ": ping" comments
RETRY_MS = 3000            # reconnect hint advertised to EventSource

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

PING = b": ping\n\n"


def format_event(event: str, data: str) -> bytes:
    return f"event: {event}\ndata: {data}\n\n".encode("utf-8")


def track_event(track: Track) -> bytes:
    return format_event("track", json.dumps(track.to_dict()))


class SseChannel:
    """One connected client."""

    def __init__(self, response: web.StreamResponse, peer: str = ""):
        self.response = response
        self.peer = peer or "?"
        self.ping_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._closed = asyncio.Event()

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    async def send(self, *chunks: bytes):
        async with self._lock:
            if self.is_closed:
                raise ConnectionResetError("channel closed")
            for chunk in chunks:
                await self.response.write(chunk)

    async def wait_closed(self):
        await self._closed.wait()

    def close(self):
        if self.is_closed:
            return
        self._closed.set()
        task = self.ping_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()


class BroadcastHub:

    def __init__(self, keepalive: float = KEEPALIVE_INTERVAL, retry_ms: int = RETRY_MS):
        self.keepalive = keepalive
        self.retry_ms = retry_ms
        self._channels: set[SseChannel] = set()

    def __len__(self):
        return len(self._channels)

    def __contains__(self, channel):
        return channel in self._channels

    async def connect(self, request: web.Request,
                      current_track: Callable[[], Track | None] | None = None,
                      headers: dict | None = None) -> SseChannel:
        """Open an SSE response, register it, send the current track first.

        *current_track* is read only once the channel is registered, so a
        track emitted while the response was being prepared is not lost.
        If the client is already gone the returned channel is closed.
        """
        response = web.StreamResponse(status=200, headers={**SSE_HEADERS, **(headers or {})})
        await response.prepare(request)
        channel = SseChannel(response, peer=request.remote or "")
        self.add(channel)

        preamble = [f"retry: {self.retry_ms}\n\n".encode()]
        current = current_track() if current_track is not None else None
        if current is not None:
            preamble.append(track_event(current))
        try:
            await channel.send(*preamble)
        except Exception as e:
            log.debug("Initial write to %s failed: %s", channel.peer, e)
            self.remove(channel)
        return channel

    def add(self, channel: SseChannel):
        """Register *channel* and start its keep-alive pings."""
        self._channels.add(channel)
        channel.ping_task = asyncio.create_task(self._keepalive(channel))
        log.info("SSE client connected: %s (%d total)", channel.peer, len(self._channels))

    def remove(self, channel: SseChannel):
        """Drop *channel*.  Safe to call any number of times."""
        if channel in self._channels:
            self._channels.discard(channel)
            log.info("SSE client disconnected: %s (%d remaining)",
                     channel.peer, len(self._channels))
        channel.close()

    async def broadcast(self, track: Track) -> int:
        """Write *track* to every channel.  Returns how many received it."""
        if not self._channels:
            return 0
        chunk = track_event(track)
        channels = list(self._channels)
        results = await asyncio.gather(*(self._deliver(ch, chunk) for ch in channels))
        delivered = sum(results)
        log.info("Broadcast %s to %d/%d clients", track, delivered, len(channels))
        return delivered

    def close(self):
        for channel in list(self._channels):
            self.remove(channel)

    async def _deliver(self, channel: SseChannel, chunk: bytes) -> bool:
        try:
            await channel.send(chunk)
            return True
        except Exception as e:
            log.debug("Write to %s failed: %s", channel.peer, e)
            self.remove(channel)
            return False

    async def _keepalive(self, channel: SseChannel):
        try:
            while not channel.is_closed:
                await asyncio.sleep(self.keepalive)
                await channel.send(PING)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.info("Keep-alive to %s failed: %s", channel.peer, e)
            self.remove(channel)
