# Orpheus
# Copyright (C) 2024-2026 Orpheus contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
TrackAssembler — folds a noisy stream of partial snapshots into one emission
per logical track change.

Media sessions announce a new track in pieces: title/artist first, artwork a
few hundred milliseconds later (or never).  The assembler holds an
incomplete track as *pending* until it has a cover or the grace period runs
out, then emits it exactly once.

    Idle ──snapshot──▶ Pending ──cover / grace timer──▶ Emitted
                          ▲                               │
                          └──────── new identity ─────────┘

Callbacks:
    on_emit(track)      — new current track (cell replaced)
    on_announce(track)  — current track patched in place (cover filled)
"""

import asyncio
import logging

from .track import Track

log = logging.getLogger(__name__)

GRACE_PERIOD = 2.0  # seconds


class TrackAssembler:

    def __init__(self, on_emit, on_announce=None, grace_period: float = GRACE_PERIOD):
        self._on_emit = on_emit
        self._on_announce = on_announce or on_emit
        self.grace_period = grace_period
        self._pending: Track | None = None
        self._current: Track | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def current(self) -> Track | None:
        return self._current

    @property
    def pending(self) -> Track | None:
        return self._pending

    # ── snapshots ──

    def feed(self, snapshot: Track):
        """Process one provisional snapshot from a backend."""
        if self._pending is not None:
            if self._pending.same_track(snapshot):
                self._pending.merge(snapshot)
                if self._pending.complete:
                    self._emit_pending()
                return
            self._start_pending(snapshot)
            return

        if self._current is not None and self._current.same_track(snapshot):
            if snapshot.cover_url and not self._current.cover_url:
                self._current.cover_url = snapshot.cover_url
                self._announce()
            return

        self._start_pending(snapshot)

    def attach_cover(self, cover_url: str) -> bool:
        """Artwork arrived without title/artist: give it to the newest track."""
        if not cover_url:
            return False
        if self._pending is not None:
            if self._pending.cover_url:
                return False
            self._pending.cover_url = cover_url
            self._emit_pending()
            return True
        if self._current is not None and not self._current.cover_url:
            self._current.cover_url = cover_url
            self._announce()
            return True
        return False

    def patch_cover(self, identity: tuple[str, str], cover_url: str | None) -> bool:
        """Apply an asynchronously resolved cover if *identity* is still live.

        Returns False (and changes nothing) when the track has moved on or
        already has artwork.
        """
        if not cover_url:
            return False
        if self._pending is not None and self._pending.identity == identity:
            if self._pending.cover_url:
                return False
            self._pending.cover_url = cover_url
            self._emit_pending()
            return True
        if (self._pending is None and self._current is not None
                and self._current.identity == identity):
            if self._current.cover_url:
                return False
            self._current.cover_url = cover_url
            self._announce()
            return True
        log.debug("Discarding stale cover for %s — %s", identity[1], identity[0])
        return False

    def seed(self, track: Track) -> bool:
        """Fill an empty current-track cell without emitting."""
        if self._current is not None or self._pending is not None:
            return False
        self._current = track
        return True

    def cancel(self):
        """Drop the pending track and its grace timer."""
        self._cancel_timer()
        self._pending = None

    # ── internals ──

    def _start_pending(self, track: Track):
        self._cancel_timer()
        self._pending = track
        if track.complete:
            self._emit_pending()
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.grace_period, self._grace_expired)

    def _grace_expired(self):
        self._timer = None
        if self._pending is not None:
            log.debug("Grace period over, emitting %s without cover", self._pending)
            self._emit_pending()

    def _emit_pending(self):
        self._cancel_timer()
        track, self._pending = self._pending, None
        self._current = track
        self._on_emit(track)

    def _announce(self):
        self._on_announce(self._current)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
