"""
Exception hierarchy.

Geolocation errors are user-visible and block a monitoring session.
`StoreUnavailable` is raised by the store client and realtime feed, and is
always absorbed by the persistence gateway (fallback, drop, or local-only clear).
"""

from __future__ import annotations


class BumpLogError(Exception):
    """Base class for all errors raised by this package."""


class GeolocationError(BumpLogError):
    """A failure reported by a geolocation backend.

    `code` follows the W3C `GeolocationPositionError` numbering so both
    backends speak the same taxonomy.
    """

    code: int = 0

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class PermissionDenied(GeolocationError):
    """Location access was refused; needs user action before retrying."""

    code = 1


class SourceUnavailable(GeolocationError):
    """No geolocation capability on this platform (or no fix source reachable)."""

    code = 2


class PositionTimeout(GeolocationError):
    """No fix arrived within the watch's `timeout_ms` window."""

    code = 3


_BY_CODE: dict[int, type[GeolocationError]] = {
    PermissionDenied.code: PermissionDenied,
    SourceUnavailable.code: SourceUnavailable,
    PositionTimeout.code: PositionTimeout,
}


def geolocation_error_from_code(code: int, message: str = "") -> GeolocationError:
    """Map a W3C error code to an exception instance (unknown codes → SourceUnavailable)."""
    cls = _BY_CODE.get(int(code), SourceUnavailable)
    return cls(message)


class StoreUnavailable(BumpLogError):
    """The authoritative store could not be read, written, or deleted from."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation
