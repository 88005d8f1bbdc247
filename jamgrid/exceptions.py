"""Exceptions raised by the capture pipeline."""


class JamGridError(Exception):
    """Base class for all pipeline errors."""


class InvalidTileKey(JamGridError, ValueError):
    """A tile file name does not follow the TIMESTAMP-xX-yY.png layout."""


class TileCaptureError(JamGridError):
    """The capture service failed to return an image for one tile."""


class TileDecodeError(JamGridError):
    """Tile bytes could not be decoded as an image."""


class CaptureError(JamGridError):
    """A capture batch produced no tiles at all.

    Raised when every dispatched capture failed, or when shutdown was requested
    before any capture was dispatched. ``failures`` maps ``(x, y)`` to the
    error message recorded for that cell.
    """

    def __init__(self, message: str, failures: dict[tuple[int, int], str] | None = None):
        super().__init__(message)
        self.failures = failures or {}


class ReplicationError(JamGridError):
    """A sync attempt to the remote store was rolled back."""


class StartupError(JamGridError):
    """Working folders or stores could not be prepared."""
