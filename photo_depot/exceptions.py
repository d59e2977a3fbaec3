"""
Custom exception hierarchy for photo depot.

This module defines specific exception types to improve error handling
and debugging throughout the application.
"""


class PhotoDepotError(Exception):
    """Base exception for all photo depot errors."""
    pass


class FileHashError(PhotoDepotError, OSError):
    """Raised when a media file cannot be opened, stat'ed or read."""
    pass


class MediaFormatError(PhotoDepotError):
    """Raised when a file doesn't have the structure its type promises."""
    pass


class MalformedBox(MediaFormatError):
    """Raised for corrupt or truncated ISOBMFF/QTFF box structure."""
    pass


class UnsupportedFeature(MediaFormatError):
    """Raised for recognized container features that aren't implemented."""
    pass


class InconsistentHashError(PhotoDepotError):
    """
    Raised when a full hash matches the stored one but the content hash
    doesn't, at a hash version that should produce identical output.
    Signals a hashing bug, never bad user data.
    """
    pass


class KeyCollisionError(PhotoDepotError):
    """Raised when merging depots finds different records for one key."""
    pass


class DepotFormatError(PhotoDepotError):
    """Raised when a depot file can't be parsed or has the wrong name."""
    pass


class ResolutionAborted(PhotoDepotError):
    """Raised when a conflict policy asks to stop the whole process."""
    pass
