"""Track — the normalised now-playing snapshot shared by every backend."""

from dataclasses import dataclass

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_ARTIST = "Unknown Artist"

# attribute name -> wire (JSON) field name
_WIRE_FIELDS = {
    "title": "title",
    "artist": "artist",
    "album": "album",
    "cover_url": "coverUrl",
    "playing": "playing",
    "duration": "duration",
    "elapsed_time": "elapsedTime",
    "bundle_identifier": "bundleIdentifier",
}

# fields a same-identity snapshot may fill in on the pending track
_MERGE_FIELDS = ("cover_url", "album", "duration")


@dataclass
class Track:
    title: str
    artist: str
    album: str | None = None
    cover_url: str | None = None
    playing: bool = True
    duration: float | None = None
    elapsed_time: float | None = None
    bundle_identifier: str | None = None

    @property
    def identity(self) -> tuple[str, str]:
        """Two snapshots are the same logical track iff title and artist match."""
        return (self.title, self.artist)

    def same_track(self, other: "Track | None") -> bool:
        return other is not None and self.identity == other.identity

    @property
    def complete(self) -> bool:
        return bool(self.title and self.artist and self.cover_url)

    def merge(self, other: "Track") -> bool:
        """Fill missing cover/album/duration from *other*.

        Never overwrites a value already present.  Returns True if anything
        changed.
        """
        changed = False
        for name in _MERGE_FIELDS:
            value = getattr(other, name)
            if value and not getattr(self, name):
                setattr(self, name, value)
                changed = True
        return changed

    def to_dict(self) -> dict:
        """Wire shape; optional fields are omitted when absent."""
        data = {}
        for name, key in _WIRE_FIELDS.items():
            value = getattr(self, name)
            if value is None:
                continue
            data[key] = value
        data["playing"] = bool(self.playing)
        return data

    def __str__(self):
        return f"{self.artist} — {self.title}"
