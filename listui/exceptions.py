"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class ListuiError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(ListuiError):
    """Raised for issues related to configuration loading or validation."""


class MetadataUnavailable(ListuiError):
    """
    Raised when a remote playlist listing cannot be obtained from any of the
    configured metadata backends.
    """

    def __init__(self, message: str, reasons: dict[str, str] | None = None):
        super().__init__(message)
        self.reasons = reasons or {}


class PlaylistNotFound(MetadataUnavailable):
    """Raised when a playlist does not exist, remotely or in the local store."""


class DownloadFailed(ListuiError):
    """Raised when a track could not be downloaded or decoded."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class MissingExternalTool(ListuiError):
    """Raised when a required external executable is not installed."""

    def __init__(self, tools: list[str]):
        super().__init__(f"Required executables not found: {', '.join(tools)}.")
        self.tools = tools


class StoreCorrupt(ListuiError):
    """Raised when the playlist database cannot be read or written."""


class DuplicatePlaylist(ListuiError):
    """Raised when importing a remote playlist that is already in the store."""


class NotReady(ListuiError):
    """Raised when a transport command needs a loaded track and there is none."""
