"""
macOS detector — reads the system Now Playing session via media-control.

media-control (https://github.com/ungive/media-control) wraps the private
MediaRemote framework, which since macOS 15.4 is only reachable through an
entitled helper.

  media-control stream  — one JSON object per line, first a full payload then
                          diffs: {"type": "data", "diff": true, "payload": {...}}
  media-control get     — single JSON payload (or null when idle)

Diffs carry only the keys that changed and are applied over the last full
payload.  A new title or artist in a diff is a track change; a diff with
just artworkData + artworkMimeType completes the pending track.
"""

import json

from ..lib.artwork import decode_embedded
from ..lib.track import UNKNOWN_ARTIST, UNKNOWN_TITLE, Track
from .base import DetectorBase, Snapshot

MEDIA_CONTROL = "media-control"


def _seconds(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class MacOSDetector(DetectorBase):

    id = "darwin"
    name = "macOS"
    command = MEDIA_CONTROL
    install_hint = "install it with: brew install media-control"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._last_payload: dict = {}

    def stream_command(self) -> list[str]:
        return [MEDIA_CONTROL, "stream"]

    def handle_line(self, line: str) -> None:
        data = json.loads(line)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        if data.get("type", "data") != "data":
            return
        payload = data.get("payload", data)
        if not isinstance(payload, dict):
            raise ValueError("payload is not an object")

        merged = self._apply_diff(payload) if data.get("diff") else dict(payload)
        if not merged.get("title") or not merged.get("artist"):
            # nothing to build a track from yet
            self.attach_cover(self._artwork(payload))
            return
        self._last_payload = merged
        self.submit(self.parse_payload(merged).track)

    def _apply_diff(self, diff: dict) -> dict:
        """Overlay a stream diff on the last full payload."""
        base = self._last_payload
        merged = {**base, **diff}
        moved_on = (merged.get("title"), merged.get("artist")) != (
            base.get("title"), base.get("artist"))
        if moved_on and "artworkData" not in diff:
            # previous track's cover
            merged.pop("artworkData", None)
            merged.pop("artworkMimeType", None)
        return merged

    async def query(self) -> Snapshot | None:
        rc, output = await self.run_command([MEDIA_CONTROL, "get"])
        output = output.strip()
        if rc != 0 or not output or output == "null":
            return None
        payload = json.loads(output)
        if not isinstance(payload, dict):
            return None
        payload = payload.get("payload", payload)
        if not payload.get("title"):
            return None
        return self.parse_payload(payload)

    def parse_payload(self, payload: dict) -> Snapshot:
        track = Track(
            title=payload.get("title") or UNKNOWN_TITLE,
            artist=payload.get("artist") or UNKNOWN_ARTIST,
            album=payload.get("album") or None,
            cover_url=self._artwork(payload),
            playing=bool(payload.get("playing", True)),
            duration=_seconds(payload.get("duration")),
            elapsed_time=_seconds(payload.get("elapsedTime")),
            bundle_identifier=payload.get("bundleIdentifier") or None,
        )
        return Snapshot(track)

    @staticmethod
    def _artwork(payload: dict) -> str | None:
        return decode_embedded(payload.get("artworkData"),
                               payload.get("artworkMimeType"))
