"""Error types raised by the store, the storage backends and the use cases."""

from __future__ import annotations


class WorkhoursError(Exception):
    """Base class for all recoverable application errors."""


class PersistenceError(WorkhoursError):
    """Reading from or writing to the storage backend failed."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class DecodeError(WorkhoursError):
    """A persisted blob could not be parsed."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class NotFoundError(WorkhoursError):
    """No record with the requested id exists."""


class NoActiveSessionError(NotFoundError):
    """A session was finished while none was in progress."""


class InvalidRangeError(WorkhoursError, ValueError):
    """End time lies before start time."""


class ActiveSessionError(WorkhoursError):
    """A session was started while another one is still in progress."""


class GeocodingError(WorkhoursError):
    """Reverse geocoding failed."""


__all__ = [
    "ActiveSessionError",
    "DecodeError",
    "GeocodingError",
    "InvalidRangeError",
    "NoActiveSessionError",
    "NotFoundError",
    "PersistenceError",
    "WorkhoursError",
]
