# Orpheus
# Copyright (C) 2024-2026 Orpheus contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
DetectorBase — shared plumbing for the per-OS now-playing detectors.

A detector owns one external media-integration process, reads its
line-delimited JSON output and feeds provisional snapshots into a
TrackAssembler.  Subscribers see ``track`` events (assembled Track) and
``error`` events (non-fatal exceptions).

Subclass contract:

    class MyDetector(DetectorBase):
        id      = "linux"
        name    = "Linux"
        command = "playerctl"          # binary reported when missing
        install_hint = "install playerctl"

        def stream_command(self) -> list[str] | None: ...   # push feed, or None
        def handle_line(self, line: str) -> None: ...       # parse + self.submit()
        async def query(self) -> Snapshot | None: ...       # one-shot read

Optional overrides:
    push_available()  — decide at start() whether to stream or poll

Delivery modes:
    push  — stream_command() runs for the detector's lifetime
    poll  — query() every poll_interval seconds; used when push is
            unavailable, and switched to automatically if the stream dies
"""

import asyncio
import logging
from typing import NamedTuple

from ..lib.artwork import load_local_file
from ..lib.assembler import GRACE_PERIOD, TrackAssembler
from ..lib.errors import DependencyMissingError, StreamEndedError
from ..lib.events import EventEmitter
from ..lib.track import Track

log = logging.getLogger(__name__)

POLL_INTERVAL = 0.5               # seconds between queries in poll mode
QUERY_TIMEOUT = 10                # seconds for a one-shot query process
STREAM_LIMIT = 16 * 1024 * 1024   # inline artwork makes for very long lines


class Snapshot(NamedTuple):
    """A parsed platform reading plus an artwork reference still to load."""
    track: Track
    art_ref: str | None = None


class DetectorBase(EventEmitter):
    # ── Subclass must set these ──
    id: str = ""
    name: str = ""
    command: str = ""
    install_hint: str = ""

    def __init__(self, resolver=None, grace_period: float = GRACE_PERIOD,
                 poll_interval: float = POLL_INTERVAL):
        super().__init__()
        self._assembler = TrackAssembler(
            self._emit_track, self._announce_track, grace_period)
        self._resolver = resolver
        self.poll_interval = poll_interval
        self.running: bool = False
        self.mode: str | None = None    # "push" | "poll"
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._artwork_tasks: set[asyncio.Task] = set()
        self._artwork_key = None

    # ── Abstract methods (subclass must implement) ──

    def stream_command(self) -> list[str] | None:
        """Command line of the push feed, or None if this OS has none."""
        return None

    def handle_line(self, line: str) -> None:
        """Parse one stream line and submit it.  Raise on malformed input."""
        raise NotImplementedError

    async def query(self) -> Snapshot | None:
        """One-shot read of what is playing right now."""
        raise NotImplementedError

    async def push_available(self) -> bool:
        return self.stream_command() is not None

    # ── Public API ──

    async def start(self):
        if self.running:
            return
        self.running = True
        try:
            if await self.push_available():
                await self._start_push()
            else:
                log.info("%s: push feed unavailable, polling every %.1fs",
                         self.name, self.poll_interval)
                self._start_polling()
        except BaseException:
            self.running = False
            raise

    async def stop(self):
        """Kill the feed, cancel timers and tasks.  Safe to call repeatedly."""
        self.running = False
        self.mode = None
        self._assembler.cancel()

        tasks = [t for t in (self._reader_task, self._poll_task) if t]
        tasks.extend(self._artwork_tasks)
        for task in tasks:
            task.cancel()

        proc, self._process = self._process, None
        if proc is not None:
            await self._terminate(proc)

        for task in tasks:
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass
        self._reader_task = None
        self._poll_task = None
        self._artwork_tasks.clear()
        self._artwork_key = None
        if self._resolver is not None:
            await self._resolver.close()

    async def get_now_playing(self) -> Track | None:
        """Forced point query, independent of the live feed.

        Artwork is resolved inline.  If nothing has been emitted yet the
        result seeds the current-track cell (without an event).
        """
        try:
            snapshot = await self.query()
        except DependencyMissingError:
            raise
        except Exception as e:
            log.warning("%s: now-playing query failed: %s", self.name, e)
            self.emit("error", e)
            return None
        if snapshot is None:
            return None

        track = snapshot.track
        if not track.cover_url:
            track.cover_url = await self._resolve_cover(track, snapshot.art_ref)
        self._assembler.seed(track)
        return track

    def get_current_track(self) -> Track | None:
        return self._assembler.current

    # ── Helpers for subclasses ──

    def submit(self, track: Track, art_ref: str | None = None):
        """Feed a snapshot; start off-loop artwork resolution if it has none."""
        self._assembler.feed(track)
        if track.cover_url or not self._needs_cover(track.identity):
            return
        key = (track.identity, art_ref)
        if key == self._artwork_key:
            return
        self._artwork_key = key
        task = asyncio.ensure_future(self._patch_cover(track, art_ref))
        self._artwork_tasks.add(task)
        task.add_done_callback(self._artwork_tasks.discard)

    def attach_cover(self, cover_url: str | None) -> bool:
        """Artwork-only event: hand the cover to the newest track."""
        if not cover_url:
            return False
        return self._assembler.attach_cover(cover_url)

    async def run_command(self, cmd: list[str],
                          timeout: float = QUERY_TIMEOUT) -> tuple[int, str]:
        """Run a one-shot command, return (returncode, stdout)."""
        proc = await self._spawn(cmd, stderr=asyncio.subprocess.DEVNULL)
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout)
        except asyncio.TimeoutError:
            await self._terminate(proc)
            raise
        return proc.returncode, stdout.decode("utf-8", errors="replace")

    # ── Push mode ──

    async def _spawn(self, cmd: list[str], stderr=asyncio.subprocess.DEVNULL):
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError:
            raise DependencyMissingError(self.command or cmd[0],
                                         self.install_hint) from None

    async def _start_push(self):
        cmd = self.stream_command()
        self._process = await self._spawn(cmd)
        self.mode = "push"
        self._reader_task = asyncio.create_task(self._read_stream(self._process))
        log.info("%s: streaming media events from %s", self.name, cmd[0])

    async def _read_stream(self, proc):
        try:
            while self.running:
                line = await proc.stdout.readline()
                if not line:
                    break
                self._process_line(line.decode("utf-8", errors="replace"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("%s: stream read failed: %s", self.name, e)
            self.emit("error", e)

        if not self.running or self._process is not proc:
            return
        # stream died under us, fall back to polling
        self._process = None
        await self._terminate(proc)
        log.warning("%s: media stream ended (rc=%s), switching to polling",
                    self.name, proc.returncode)
        self.emit("error", StreamEndedError(
            f"{self.command or self.name} stream exited with code {proc.returncode}"))
        self._start_polling()

    def _process_line(self, text: str):
        text = text.strip()
        if not text:
            return
        try:
            self.handle_line(text)
        except Exception as e:
            log.warning("%s: dropping malformed line (%s): %.120s", self.name, e, text)
            self.emit("error", e)

    # ── Poll mode ──

    def _start_polling(self):
        self.mode = "poll"
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def _poll_loop(self):
        while self.running:
            try:
                snapshot = await self.query()
            except asyncio.CancelledError:
                raise
            except DependencyMissingError as e:
                # not going to fix itself: report once and stop polling
                log.error("%s: %s", self.name, e)
                self.emit("error", e)
                return
            except Exception as e:
                log.debug("%s: poll failed: %s", self.name, e)
                self.emit("error", e)
                snapshot = None

            if snapshot is not None:
                self.submit(snapshot.track, snapshot.art_ref)
            await asyncio.sleep(self.poll_interval)

    # ── Artwork ──

    def _needs_cover(self, identity) -> bool:
        live = self._assembler.pending or self._assembler.current
        return live is not None and live.identity == identity and not live.cover_url

    async def _resolve_cover(self, track: Track, art_ref: str | None) -> str | None:
        cover = None
        if art_ref:
            cover = await load_local_file(art_ref)
        if not cover and self._resolver is not None:
            cover = await self._resolver.fetch_cover_art(
                track.artist, track.album, track.title)
        return cover

    async def _patch_cover(self, track: Track, art_ref: str | None):
        try:
            cover = await self._resolve_cover(track, art_ref)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.debug("%s: artwork resolution failed: %s", self.name, e)
            return
        if cover:
            self._assembler.patch_cover(track.identity, cover)

    # ── Assembler callbacks ──

    def _emit_track(self, track: Track):
        log.info("Now playing: %s%s", track, "" if track.cover_url else " (no cover)")
        self.emit("track", track)

    def _announce_track(self, track: Track):
        log.debug("Cover updated for %s", track)
        self.emit("track", track)

    # ── Process cleanup ──

    async def _terminate(self, proc):
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(proc.wait(), 2)
        except asyncio.TimeoutError:
            log.warning("%s: %s did not exit after kill", self.name, self.command)
