"""Error kinds reported by the relay registry."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    ALREADY_REGISTERED = "already_registered"
    NOT_FOUND = "not_found"
    STORE_UNAVAILABLE = "store_unavailable"
    ALREADY_INITIALIZED = "already_initialized"
    INVALID_ARGUMENT = "invalid_argument"


class RegistryError(Exception):
    """Base class for recoverable registry failures."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict:
        return {"error": self.kind.value, "message": self.message}


class AlreadyRegistered(RegistryError):
    kind = ErrorKind.ALREADY_REGISTERED


class NotFound(RegistryError):
    kind = ErrorKind.NOT_FOUND


class StoreUnavailable(RegistryError):
    """The persisted snapshot cannot be loaded or written."""

    kind = ErrorKind.STORE_UNAVAILABLE


class AlreadyInitialized(RegistryError):
    """A snapshot exists and initialization was not forced."""

    kind = ErrorKind.ALREADY_INITIALIZED


__all__ = [
    "AlreadyInitialized",
    "AlreadyRegistered",
    "ErrorKind",
    "NotFound",
    "RegistryError",
    "StoreUnavailable",
]
