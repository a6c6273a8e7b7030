"""Registry state machine: registration, reputation, liveness and assignment."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .errors import AlreadyRegistered, NotFound
from .models import Registry, ServerRecord


LIVENESS_WINDOW_S = int(os.getenv("LIVENESS_WINDOW_S", "30"))


def _wall_clock() -> int:
    return int(time.time())


@dataclass(frozen=True)
class HeartbeatOutcome:
    """Result of a heartbeat: either liveness was recorded or a client was handed over."""

    client_public_key: Optional[str] = None

    @property
    def assignment_delivered(self) -> bool:
        return self.client_public_key is not None


LIVENESS_RECORDED = HeartbeatOutcome()


class RegistryService:
    """Applies one state transition per call to the persisted registry.

    Every mutating call loads the snapshot, changes it and saves it back while
    holding a single lock, so concurrent callers never interleave their
    read-modify-write sequences.
    """

    def __init__(
        self,
        store,
        clock: Callable[[], int] = _wall_clock,
        liveness_window: int = LIVENESS_WINDOW_S,
    ) -> None:
        self.store = store
        self.clock = clock
        self.liveness_window = liveness_window
        self._lock = threading.Lock()

    def _now(self, now: Optional[int]) -> int:
        return int(self.clock()) if now is None else int(now)

    # -- administration ------------------------------------------------------

    def initialize(self, force: bool = False) -> None:
        with self._lock:
            self.store.initialize(force=force)

    def evict_stale(self, max_age: int, now: Optional[int] = None) -> List[str]:
        """Delete records idle for more than *max_age* seconds.

        Pending assignments left without any server of that name are dropped
        as well. Returns the evicted identities in sorted order.
        """

        if max_age < self.liveness_window:
            raise ValueError(
                f"Eviction age must be at least the liveness window ({self.liveness_window}s)"
            )
        now = self._now(now)
        with self._lock:
            registry = self.store.load()
            evicted = sorted(
                identity
                for identity, record in registry.servers.items()
                if now - record.last_active > max_age
            )
            if not evicted:
                return []
            for identity in evicted:
                del registry.servers[identity]
            remaining_names = {record.name for record in registry.servers.values()}
            for name in list(registry.pending_assignments):
                if name not in remaining_names:
                    del registry.pending_assignments[name]
            self.store.save(registry)
        print(f"[registry] Evicted {len(evicted)} stale server(s)")
        return evicted

    # -- registration and reputation -----------------------------------------

    def register(
        self,
        identity: str,
        name: str,
        public_key: str,
        address: str,
        now: Optional[int] = None,
    ) -> ServerRecord:
        now = self._now(now)
        with self._lock:
            registry = self.store.load()
            if identity in registry.servers:
                raise AlreadyRegistered(f"Server already registered by this identity: {identity}")
            record = ServerRecord(name=name, public_key=public_key, address=address, last_active=now)
            registry.servers[identity] = record
            self.store.save(registry)
        return record

    def adjust_reputation(self, identity: str, delta: int) -> int:
        with self._lock:
            registry = self.store.load()
            record = registry.servers.get(identity)
            if record is None:
                raise NotFound(f"Server not found for identity: {identity}")
            record.reputation += delta
            self.store.save(registry)
            return record.reputation

    def get_record(self, identity: str) -> ServerRecord:
        with self._lock:
            registry = self.store.load()
        try:
            return registry.servers[identity]
        except KeyError as exc:
            raise NotFound(f"Server not found for identity: {identity}") from exc

    # -- liveness and assignment ---------------------------------------------

    def heartbeat(self, identity: str, now: Optional[int] = None) -> HeartbeatOutcome:
        """Record liveness, or hand over the pending client for this server's name.

        Delivery takes priority: when an assignment is waiting it is removed
        and returned, and ``last_active`` is left untouched.
        """

        now = self._now(now)
        with self._lock:
            registry = self.store.load()
            record = registry.servers.get(identity)
            if record is None:
                raise NotFound(f"Server not found for identity: {identity}")

            client_public_key = registry.pending_assignments.pop(record.name, None)
            if client_public_key is not None:
                self.store.save(registry)
                return HeartbeatOutcome(client_public_key=client_public_key)

            record.last_active = max(record.last_active, now)
            self.store.save(registry)
            return LIVENESS_RECORDED

    def select_server(self, name: str, client_public_key: str) -> Tuple[str, str]:
        """Queue *client_public_key* for the server called *name*.

        When several identities registered the same name the most recently
        active one is chosen, then the higher reputation, then the smallest
        identity. That choice only decides which credentials are returned:
        the assignment is queued by name, so whichever identity of that name
        heartbeats first receives it.
        """

        with self._lock:
            registry = self.store.load()
            candidates = [
                (identity, record)
                for identity, record in registry.servers.items()
                if record.name == name
            ]
            if not candidates:
                raise NotFound(f"Server not found: {name}")
            _, chosen = min(
                candidates,
                key=lambda item: (-item[1].last_active, -item[1].reputation, item[0]),
            )
            registry.pending_assignments[name] = client_public_key
            self.store.save(registry)
            return chosen.public_key, chosen.address

    # -- directory -----------------------------------------------------------

    def active_servers(self, now: Optional[int] = None) -> List[Tuple[str, str, str, int]]:
        now = self._now(now)
        with self._lock:
            registry = self.store.load()
        active = [
            (record.name, identity, record)
            for identity, record in registry.servers.items()
            if now - record.last_active <= self.liveness_window
        ]
        active.sort(key=lambda item: (item[0], item[1]))
        return [record.directory_entry() for _, _, record in active]

    def pending_assignments(self) -> dict:
        with self._lock:
            return dict(self.store.load().pending_assignments)


__all__ = [
    "LIVENESS_RECORDED",
    "LIVENESS_WINDOW_S",
    "HeartbeatOutcome",
    "RegistryService",
]
