"""
Linux detector — MPRIS players via playerctl.

  playerctl metadata --follow --format FMT   — a line per metadata change
  playerctl metadata --format FMT            — one-shot (non-zero rc: no player)

FMT renders a JSON object.  mpris:length and position are microseconds.
mpris:artUrl is usually file:// (browsers, local players caching the cover)
or https:// (Spotify); local files are read off the event loop and inlined.
"""

import json
import logging

from ..lib.artwork import is_local, is_remote
from ..lib.errors import DependencyMissingError
from ..lib.track import UNKNOWN_ARTIST, Track
from .base import DetectorBase, Snapshot

log = logging.getLogger(__name__)

PLAYERCTL = "playerctl"
PLAYERCTL_FORMAT = (
    '{"title":"{{title}}","artist":"{{artist}}","album":"{{album}}",'
    '"artUrl":"{{mpris:artUrl}}","status":"{{status}}",'
    '"length":"{{mpris:length}}","position":"{{position}}",'
    '"player":"{{playerName}}"}'
)


def _micros(value) -> float | None:
    """playerctl microsecond string → seconds."""
    if value in (None, ""):
        return None
    try:
        return int(float(value)) / 1_000_000
    except (TypeError, ValueError):
        return None


class LinuxDetector(DetectorBase):

    id = "linux"
    name = "Linux"
    command = PLAYERCTL
    install_hint = "install playerctl from your distribution's packages"

    def stream_command(self) -> list[str]:
        return [PLAYERCTL, "metadata", "--follow", "--format", PLAYERCTL_FORMAT]

    async def push_available(self) -> bool:
        """Older playerctl builds lack --follow; probe before streaming."""
        try:
            rc, version = await self.run_command([PLAYERCTL, "--version"], timeout=5)
        except DependencyMissingError:
            raise
        except Exception as e:
            log.warning("playerctl --version failed: %s", e)
            return False
        if rc != 0:
            return False
        log.info("Using %s", version.strip() or PLAYERCTL)
        return True

    def handle_line(self, line: str) -> None:
        snapshot = self.parse_metadata(json.loads(line))
        if snapshot is not None:
            self.submit(snapshot.track, snapshot.art_ref)

    async def query(self) -> Snapshot | None:
        rc, output = await self.run_command(
            [PLAYERCTL, "metadata", "--format", PLAYERCTL_FORMAT])
        if rc != 0 or not output.strip():
            return None
        return self.parse_metadata(json.loads(output.strip()))

    def parse_metadata(self, data) -> Snapshot | None:
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        title = (data.get("title") or "").strip()
        if not title:
            # player closed or between tracks
            return None

        cover_url = None
        art_ref = None
        art_url = (data.get("artUrl") or "").strip()
        if is_remote(art_url):
            cover_url = art_url
        elif is_local(art_url):
            art_ref = art_url

        track = Track(
            title=title,
            artist=(data.get("artist") or "").strip() or UNKNOWN_ARTIST,
            album=(data.get("album") or "").strip() or None,
            cover_url=cover_url,
            playing=data.get("status") == "Playing",
            duration=_micros(data.get("length")),
            elapsed_time=_micros(data.get("position")),
            bundle_identifier=(data.get("player") or "").strip() or None,
        )
        return Snapshot(track, art_ref)
