"""
Exception hierarchy for the catalog scanner.

Per-file and per-job failures are caught by the scan and queue loops and
turned into structured status; only session-level failures (bad root,
concurrent scan) reach the caller as exceptions.
"""


class CatalogError(Exception):
    """Base exception for all catalog scanner errors."""
    pass


class InvalidRootError(CatalogError):
    """Raised when a scan root does not exist, is unreadable, or is not a directory."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid directory path: {path} ({reason})")
        self.path = path
        self.reason = reason


class ScanInProgressError(CatalogError):
    """Raised when a scan is requested while another one is still running."""
    pass


class ProcessStartError(CatalogError):
    """Raised when an external tool (ffmpeg/ffprobe) cannot be started."""
    pass


class ProbeError(CatalogError):
    """Raised when metadata cannot be extracted from a video."""
    pass


class AssetGenerationError(CatalogError):
    """Raised when ffmpeg fails to produce a thumbnail, sprite sheet or proxy."""
    pass


class OutputMissingError(AssetGenerationError):
    """Raised when ffmpeg exited cleanly but the expected output file is absent."""
    pass


class StoreError(CatalogError):
    """Raised when a catalog database operation fails."""
    pass
