"""
Windows detector — System Media Transport Controls through PowerShell.

Windows exposes the current media session through the WinRT
GlobalSystemMediaTransportControlsSessionManager.  Rather than binding WinRT
from Python we drive it from a PowerShell child:

  STREAM_SCRIPT  — loops every 500 ms, prints compressed JSON when the track
                   changes or its thumbnail first becomes available
  GET_SCRIPT     — prints one JSON object (with timeline), or {} when idle

Thumbnails arrive as base64 with no content type; the MIME type is sniffed.
"""

import json

from ..lib.artwork import decode_embedded
from ..lib.track import UNKNOWN_ARTIST, Track
from .base import DetectorBase, Snapshot

POWERSHELL = "powershell"

PS_INIT = r"""
[Console]::OutputEncoding = [System.Text.Encoding]::UTF8
Add-Type -AssemblyName System.Runtime.WindowsRuntime

$null = [Windows.Media.Control.GlobalSystemMediaTransportControlsSessionManager, Windows.Media.Control, ContentType = WindowsRuntime]
$null = [Windows.Storage.Streams.DataReader, Windows.Storage.Streams, ContentType = WindowsRuntime]

function Await($WinRtTask, $ResultType) {
  $asTaskGeneric = ([System.WindowsRuntimeSystemExtensions].GetMethods() |
    Where-Object { $_.Name -eq 'AsTask' -and $_.GetParameters().Count -eq 1 -and $_.GetParameters()[0].ParameterType.Name -eq 'IAsyncOperation`1' })[0]
  $asTask = $asTaskGeneric.MakeGenericMethod($ResultType)
  $netTask = $asTask.Invoke($null, @($WinRtTask))
  $netTask.Wait(-1) | Out-Null
  $netTask.Result
}

function Get-Artwork($mediaProps) {
  if ($mediaProps.Thumbnail) {
    try {
      $stream = Await ($mediaProps.Thumbnail.OpenReadAsync()) ([Windows.Storage.Streams.IRandomAccessStreamWithContentType])
      $reader = [Windows.Storage.Streams.DataReader]::new($stream)
      Await ($reader.LoadAsync($stream.Size)) ([uint32]) | Out-Null
      $bytes = New-Object byte[] $stream.Size
      $reader.ReadBytes($bytes)
      $artwork = [Convert]::ToBase64String($bytes)
      $reader.Dispose()
      $stream.Dispose()
      return $artwork
    } catch {}
  }
  return $null
}

function Get-Session {
  $sessionManager = Await ([Windows.Media.Control.GlobalSystemMediaTransportControlsSessionManager]::RequestAsync()) ([Windows.Media.Control.GlobalSystemMediaTransportControlsSessionManager])
  $sessionManager.GetCurrentSession()
}
"""

STREAM_SCRIPT = PS_INIT + r"""
function Get-MediaInfo {
  try {
    $session = Get-Session
    if ($null -eq $session) { return $null }

    $mediaProps = Await ($session.TryGetMediaPropertiesAsync()) ([Windows.Media.Control.GlobalSystemMediaTransportControlsSessionMediaProperties])
    $playbackInfo = $session.GetPlaybackInfo()

    @{
      title = $mediaProps.Title
      artist = $mediaProps.Artist
      album = $mediaProps.AlbumTitle
      playing = $playbackInfo.PlaybackStatus -eq 'Playing'
      app = $session.SourceAppUserModelId
      artwork = Get-Artwork $mediaProps
    }
  } catch { $null }
}

$lastTitle = ""
$lastArtist = ""
$lastHasArt = $false

while ($true) {
  $info = Get-MediaInfo
  if ($null -ne $info) {
    $changed = $info.title -ne $lastTitle -or $info.artist -ne $lastArtist
    $artArrived = $info.artwork -and -not $lastHasArt
    if ($changed -or $artArrived) {
      $lastTitle = $info.title
      $lastArtist = $info.artist
      $lastHasArt = [bool]$info.artwork
      $info | ConvertTo-Json -Compress
    }
  }
  Start-Sleep -Milliseconds 500
}
"""

GET_SCRIPT = PS_INIT + r"""
try {
  $session = Get-Session
  if ($null -eq $session) {
    Write-Output '{}'
    exit
  }

  $mediaProps = Await ($session.TryGetMediaPropertiesAsync()) ([Windows.Media.Control.GlobalSystemMediaTransportControlsSessionMediaProperties])
  $playbackInfo = $session.GetPlaybackInfo()
  $timelineProps = $session.GetTimelineProperties()

  $result = @{
    title = $mediaProps.Title
    artist = $mediaProps.Artist
    album = $mediaProps.AlbumTitle
    playing = $playbackInfo.PlaybackStatus -eq 'Playing'
    app = $session.SourceAppUserModelId
    duration = $timelineProps.EndTime.TotalSeconds
    elapsedTime = $timelineProps.Position.TotalSeconds
    artworkData = Get-Artwork $mediaProps
  }

  $result | ConvertTo-Json -Compress
} catch {
  Write-Output '{}'
}
"""


def _powershell(script: str) -> list[str]:
    return [POWERSHELL, "-NoProfile", "-NonInteractive", "-Command", script]


class WindowsDetector(DetectorBase):

    id = "win32"
    name = "Windows"
    command = POWERSHELL
    install_hint = "Windows PowerShell must be on PATH"

    def stream_command(self) -> list[str]:
        return _powershell(STREAM_SCRIPT)

    def handle_line(self, line: str) -> None:
        snapshot = self.parse_info(json.loads(line))
        if snapshot is not None:
            self.submit(snapshot.track)

    async def query(self) -> Snapshot | None:
        rc, output = await self.run_command(_powershell(GET_SCRIPT))
        if rc != 0:
            return None
        return self.parse_info(json.loads(output.strip() or "{}"))

    def parse_info(self, data) -> Snapshot | None:
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        if not data.get("title"):
            return None

        artwork = data.get("artwork") or data.get("artworkData")
        track = Track(
            title=data["title"],
            artist=data.get("artist") or UNKNOWN_ARTIST,
            album=data.get("album") or None,
            cover_url=decode_embedded(artwork),
            playing=bool(data.get("playing", True)),
            duration=data.get("duration") or None,
            elapsed_time=data.get("elapsedTime") or None,
            bundle_identifier=data.get("app") or None,
        )
        return Snapshot(track)
