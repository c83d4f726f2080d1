"""Exceptions raised across the detection pipeline."""


class OrpheusError(Exception):
    """Base class for Orpheus errors."""


class DependencyMissingError(OrpheusError):
    """The OS media integration this host needs is not installed.

    Raised once from ``start()`` / ``get_now_playing()`` so the caller can tell
    the user what to install.  Never retried internally.
    """

    def __init__(self, command: str, hint: str = ""):
        self.command = command
        self.hint = hint
        message = f"{command} not found"
        if hint:
            message = f"{message} — {hint}"
        super().__init__(message)


class UnsupportedPlatformError(DependencyMissingError):
    """No detector backend exists for this operating system."""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(
            platform, "no media detector available for this platform")


class StreamEndedError(OrpheusError):
    """A backend's push stream stopped while the detector was running."""
