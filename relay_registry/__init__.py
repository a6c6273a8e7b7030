"""Rendezvous and liveness registry for ephemeral relay nodes."""

from .errors import AlreadyInitialized, AlreadyRegistered, ErrorKind, NotFound, RegistryError, StoreUnavailable
from .models import Registry, ServerRecord
from .registry import LIVENESS_WINDOW_S, HeartbeatOutcome, RegistryService
from .storage import JsonFileStore, MemoryStore

__all__ = [
    "AlreadyInitialized",
    "AlreadyRegistered",
    "ErrorKind",
    "HeartbeatOutcome",
    "JsonFileStore",
    "LIVENESS_WINDOW_S",
    "MemoryStore",
    "NotFound",
    "Registry",
    "RegistryError",
    "RegistryService",
    "ServerRecord",
    "StoreUnavailable",
]
