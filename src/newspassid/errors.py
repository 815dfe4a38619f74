"""Error taxonomy for NewsPassID.

How each class is treated:
- ValidationError: malformed or incomplete request, answered with 400, never retried
- StorageReadError: segment source unreadable, treated as "no segments"
- StorageWriteError: fatal for the event record (500), a warning for the mapping
- NetworkError: client-side backend call failed, client falls back locally
- ConsentResolutionError: consent lookup failed, an empty string is used instead
"""

from __future__ import annotations


class NewsPassError(Exception):
    """Base class for all NewsPassID errors."""


class ValidationError(NewsPassError):
    """An identity event failed validation."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class StorageReadError(NewsPassError):
    """Reading an object from storage failed."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"read {key}: {reason}")
        self.key = key
        self.reason = reason


class StorageWriteError(NewsPassError):
    """Writing an object to storage failed."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"write {key}: {reason}")
        self.key = key
        self.reason = reason


class NetworkError(NewsPassError):
    """The client could not get a usable answer from the ingestion backend."""


class ConsentResolutionError(NewsPassError):
    """The consent string could not be obtained."""
