# Orpheus
# Copyright (C) 2024-2026 Orpheus contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Orpheus overlay server (orpheus-server)

Serves the live now-playing feed that overlay themes consume:

  GET /api/now-playing  — current track as JSON, or null
  GET /api/stream       — Server-Sent Events: "track" events + keep-alive pings
  GET /api/health       — liveness + version
  GET /                 — endpoint index

Port comes from config.json ("port", default 4242).  Theme pages are served
by the theme layer, not here.
"""

import asyncio
import logging
import signal
import sys

from aiohttp import web

from . import __version__
from .lib.broadcast import KEEPALIVE_INTERVAL, RETRY_MS, BroadcastHub
from .lib.config import cfg
from .lib.errors import DependencyMissingError
from .media import media_detector

log = logging.getLogger(__name__)

DEFAULT_PORT = 4242


class OverlayServer:

    def __init__(self, port: int | None = None, host: str = "0.0.0.0",
                 detector=None, hub: BroadcastHub | None = None):
        self.port = port if port is not None else int(cfg("port", default=DEFAULT_PORT))
        self.host = host
        self.theme = cfg("currentTheme", default="default")
        self.detector = detector or media_detector
        self.hub = hub or BroadcastHub(
            keepalive=float(cfg("sse", "keepalive", default=KEEPALIVE_INTERVAL)),
            retry_ms=int(cfg("sse", "retry", default=RETRY_MS)),
        )
        self.running: bool = False
        self._runner: web.AppRunner | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._handle_index)
        app.router.add_get("/api/health", self._handle_health)
        app.router.add_get("/api/now-playing", self._handle_now_playing)
        app.router.add_get("/api/stream", self._handle_stream)
        app.router.add_route("OPTIONS", "/api/{tail:.*}", self._handle_options)
        return app

    # ── Lifecycle ──

    async def start(self):
        """Start detection, seed the current track, start listening.

        DependencyMissingError from the detector propagates to the caller.
        """
        self.running = True
        self.detector.on("track", self.hub.broadcast)
        self.detector.on("error", self._on_detector_error)
        await self.detector.start()
        await self.detector.get_now_playing()

        # handler_cancellation: a dropped client cancels its /api/stream handler
        self._runner = web.AppRunner(self.create_app(), handler_cancellation=True)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("Orpheus server running at http://localhost:%d", self.port)
        log.info("Overlay feed: http://localhost:%d/api/stream (theme: %s)",
                 self.port, self.theme)

    async def run(self):
        """Convenience entry-point: start + wait for signal + stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass  # Windows: KeyboardInterrupt ends asyncio.run instead
        try:
            await stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self):
        log.info("Shutting down Orpheus...")
        self.running = False
        self.hub.close()
        self.detector.off("track", self.hub.broadcast)
        self.detector.off("error", self._on_detector_error)
        await self.detector.stop()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    def _on_detector_error(self, error: Exception):
        log.warning("Media detector: %s", error)

    # ── HTTP route handlers ──

    def _cors_headers(self):
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    async def _handle_options(self, request: web.Request) -> web.Response:
        return web.Response(headers=self._cors_headers())

    async def _handle_index(self, request: web.Request) -> web.Response:
        return web.json_response({
            "name": "orpheus",
            "version": __version__,
            "theme": self.theme,
            "endpoints": ["/api/now-playing", "/api/stream", "/api/health"],
        }, headers=self._cors_headers())

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {"status": "ok", "version": __version__},
            headers=self._cors_headers())

    async def _handle_now_playing(self, request: web.Request) -> web.Response:
        track = self.detector.get_current_track()
        if track is None:
            try:
                track = await self.detector.get_now_playing()
            except DependencyMissingError as e:
                return web.json_response(
                    {"error": str(e), "dependency": e.command},
                    status=503, headers=self._cors_headers())
        return web.json_response(
            track.to_dict() if track else None,
            headers=self._cors_headers())

    async def _handle_stream(self, request: web.Request) -> web.StreamResponse:
        channel = await self.hub.connect(
            request, self.detector.get_current_track,
            headers=self._cors_headers())
        try:
            await channel.wait_closed()
        finally:
            self.hub.remove(channel)
        return channel.response


def setup_logging():
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    level = str(cfg("log_level", default="INFO")).upper()
    logging.getLogger().setLevel(getattr(logging, level, logging.INFO))


async def main():
    server = OverlayServer()
    await server.run()


def run():
    """Console entry point."""
    setup_logging()
    try:
        asyncio.run(main())
    except DependencyMissingError as e:
        log.error("%s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        log.info("Interrupted")


if __name__ == "__main__":
    run()
