"""Snapshot storage for the registry aggregate."""

from __future__ import annotations

import copy
import json
import os
import tempfile

from .errors import AlreadyInitialized, StoreUnavailable
from .models import Registry


DB_FILE = os.getenv("REGISTRY_DB_FILE", "registry_data.json")
STORAGE_VERSION = 1


class JsonFileStore:
    """Keeps the whole registry in one JSON document on disk.

    Loading never falls back to an empty registry: a missing, unreadable or
    malformed snapshot raises :class:`StoreUnavailable`. An empty snapshot is
    only created through :meth:`initialize`.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = path or DB_FILE

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def initialize(self, force: bool = False) -> None:
        if self.exists() and not force:
            raise AlreadyInitialized(f"Snapshot already exists at {self.path}")
        print(f"[storage] Initializing empty registry at {self.path}")
        self.save(Registry())

    def load(self) -> Registry:
        if not self.exists():
            print(f"[storage] No registry snapshot at {self.path}")
            raise StoreUnavailable(f"Registry snapshot not found at {self.path}; initialize it first")
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print(f"[storage] Failed to read registry: {e}")
            raise StoreUnavailable(f"Registry snapshot at {self.path} is unreadable") from e

        if not isinstance(raw_data, dict):
            print(f"[storage] Unexpected snapshot layout in {self.path}")
            raise StoreUnavailable(f"Registry snapshot at {self.path} is malformed")

        # Untagged snapshots predate the version field and share the v1 layout
        version = raw_data.get("storage_version", 1)
        if not isinstance(version, int) or version > STORAGE_VERSION:
            print(f"[storage] Unsupported storage version {version!r}")
            raise StoreUnavailable(f"Unsupported registry storage version: {version!r}")

        try:
            return Registry.from_dict(raw_data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            print(f"[storage] Failed to decode registry: {e}")
            raise StoreUnavailable(f"Registry snapshot at {self.path} is malformed") from e

    def save(self, registry: Registry) -> None:
        data = {"storage_version": STORAGE_VERSION}
        data.update(registry.to_dict())
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(prefix=".registry-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            print(f"[storage] Failed to write registry: {e}")
            raise StoreUnavailable(f"Registry snapshot at {self.path} could not be written") from e


class MemoryStore:
    """In-process store with the same load/save contract as :class:`JsonFileStore`."""

    def __init__(self, registry: Registry | None = None) -> None:
        self._snapshot = copy.deepcopy(registry) if registry is not None else None

    def exists(self) -> bool:
        return self._snapshot is not None

    def initialize(self, force: bool = False) -> None:
        if self.exists() and not force:
            raise AlreadyInitialized("Snapshot already exists in memory")
        self._snapshot = Registry()

    def load(self) -> Registry:
        if self._snapshot is None:
            raise StoreUnavailable("Registry snapshot has not been initialized")
        return copy.deepcopy(self._snapshot)

    def save(self, registry: Registry) -> None:
        self._snapshot = copy.deepcopy(registry)


__all__ = ["DB_FILE", "STORAGE_VERSION", "JsonFileStore", "MemoryStore"]
