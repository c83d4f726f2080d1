# Orpheus
# Copyright (C) 2024-2026 Orpheus contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Process-wide media detector façade.

The serving layer talks to ``media_detector`` and never to a backend
directly.  The backend is built lazily on first use; listeners registered
before it exists are queued in order and attached the moment it is ready,
so an early subscriber cannot miss an event.  Concurrent first uses share a
single in-flight construction.

    from orpheus.media import media_detector

    media_detector.on("track", handle_track)
    await media_detector.start()
    media_detector.get_current_track()     # non-blocking cell read
    await media_detector.get_now_playing()  # forced point query
"""

import asyncio
import inspect
import logging

from .detectors import DetectorBase, create_detector
from .lib.track import Track

log = logging.getLogger(__name__)


class MediaDetectorFacade:

    def __init__(self, factory=create_detector):
        self._factory = factory
        self._detector: DetectorBase | None = None
        self._init_future: asyncio.Future | None = None
        self._pending_listeners: list[tuple[str, object]] = []

    async def get_instance(self) -> DetectorBase:
        if self._detector is not None:
            return self._detector
        return await asyncio.shield(self._ensure_init())

    # ── Surface used by the server ──

    async def start(self):
        detector = await self.get_instance()
        await detector.start()

    async def stop(self):
        if self._detector is not None:
            await self._detector.stop()

    async def get_now_playing(self) -> Track | None:
        detector = await self.get_instance()
        return await detector.get_now_playing()

    def get_current_track(self) -> Track | None:
        if self._detector is None:
            return None
        return self._detector.get_current_track()

    def on(self, event: str, handler):
        if self._detector is not None:
            self._detector.on(event, handler)
            return self
        self._pending_listeners.append((event, handler))
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return self  # built on first awaited use instead
        self._ensure_init()
        return self

    def off(self, event: str, handler):
        if self._detector is not None:
            self._detector.off(event, handler)
        elif (event, handler) in self._pending_listeners:
            self._pending_listeners.remove((event, handler))
        return self

    # ── Construction ──

    def _ensure_init(self) -> asyncio.Future:
        if self._init_future is None:
            self._init_future = asyncio.ensure_future(self._construct())
            self._init_future.add_done_callback(self._init_done)
        return self._init_future

    async def _construct(self) -> DetectorBase:
        detector = self._factory()
        if inspect.isawaitable(detector):
            detector = await detector
        for event, handler in self._pending_listeners:
            detector.on(event, handler)
        self._pending_listeners.clear()
        self._detector = detector
        return detector

    def _init_done(self, future: asyncio.Future):
        if future.cancelled():
            self._init_future = None
            return
        exc = future.exception()
        if exc is not None:
            log.error("Could not create media detector: %s", exc)
            # let a later explicit call try again
            self._init_future = None


media_detector = MediaDetectorFacade()
