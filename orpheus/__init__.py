"""
Orpheus — now-playing detection and live overlay feed.

Watches the host's media session (macOS media-control, Linux MPRIS via
playerctl, Windows SMTC via PowerShell) and pushes the current track to
browser overlays over Server-Sent Events.
"""

__version__ = "1.0.0"
