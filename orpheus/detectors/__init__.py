"""
Detectors — per-OS now-playing backends.

A detector does NOT control playback.  It watches the operating system's
media session and reports what is playing — title, artist, album, artwork,
play state — as assembled Track events.

Exactly one detector runs per process, chosen by ``create_detector`` from
the host platform:
  macos.py    — media-control (MediaRemote)
  linux.py    — playerctl (MPRIS)
  windows.py  — PowerShell + WinRT SMTC

Backend modules are imported lazily so a host only needs its own backend's
dependencies.
"""

import logging
import sys

from ..lib.assembler import GRACE_PERIOD
from ..lib.config import cfg
from ..lib.cover_art import CoverArtResolver
from ..lib.errors import UnsupportedPlatformError
from .base import POLL_INTERVAL, DetectorBase, Snapshot

logger = logging.getLogger(__name__)

__all__ = [
    "DetectorBase",
    "Snapshot",
    "create_detector",
]


def create_detector(platform: str | None = None, *, resolver=None,
                    grace_period: float | None = None,
                    poll_interval: float | None = None) -> DetectorBase:
    """Create the detector for *platform* (default: this host).

    Tuning falls back to config.json:
      media.grace_period   – seconds to wait for artwork (default 2.0)
      media.poll_interval  – seconds between polls in poll mode (default 0.5)
      cover_art.*          – see CoverArtResolver.from_config
    """
    platform = platform or sys.platform
    if grace_period is None:
        grace_period = float(cfg("media", "grace_period", default=GRACE_PERIOD))
    if poll_interval is None:
        poll_interval = float(cfg("media", "poll_interval", default=POLL_INTERVAL))
    if resolver is None:
        resolver = CoverArtResolver.from_config()
    options = dict(resolver=resolver, grace_period=grace_period,
                   poll_interval=poll_interval)

    if platform == "darwin":
        from .macos import MacOSDetector
        detector = MacOSDetector(**options)
    elif platform.startswith("linux"):
        from .linux import LinuxDetector
        detector = LinuxDetector(**options)
    elif platform in ("win32", "cygwin"):
        from .windows import WindowsDetector
        detector = WindowsDetector(**options)
    else:
        raise UnsupportedPlatformError(platform)

    logger.info("Media detector: %s (grace %.1fs, poll %.1fs)",
                detector.name, grace_period, poll_interval)
    return detector
