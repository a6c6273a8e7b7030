"""Relay node agent: register once, then heartbeat until a client is assigned."""

from __future__ import annotations

import base64
import os
import time
from typing import Callable, Optional, Tuple

from nacl.public import PrivateKey

from .client import RegistryClient, RegistryClientError

HEARTBEAT_INTERVAL_S = float(os.getenv("HEARTBEAT_INTERVAL_S", "10"))


def generate_keypair() -> Tuple[str, str]:
    """Return ``(private, public)`` X25519 keys, base64 encoded like ``wg genkey``/``wg pubkey``."""

    sk = PrivateKey.generate()
    private_b64 = base64.b64encode(bytes(sk)).decode("ascii")
    public_b64 = base64.b64encode(bytes(sk.public_key)).decode("ascii")
    return private_b64, public_b64


class RelayAgent:
    """
    Drives one relay node against the registry:
      - register the node (an existing registration counts as a login)
      - heartbeat every ``interval`` seconds
      - stop as soon as a heartbeat delivers a client assignment
    """

    def __init__(
        self,
        client: RegistryClient,
        name: str,
        public_key: str,
        address: str,
        interval: float = HEARTBEAT_INTERVAL_S,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.name = name
        self.public_key = public_key
        self.address = address
        self.interval = interval
        self._sleep = sleep
        self.assigned_client: Optional[str] = None

    def register(self) -> bool:
        """Register the node; return ``False`` when it was already registered."""

        try:
            message = self.client.register(self.name, self.public_key, self.address)
        except RegistryClientError as exc:
            if exc.kind == "already_registered":
                print(f"[agent] {self.name} already registered, resuming heartbeats")
                return False
            raise
        print(f"[agent] {message}")
        return True

    def beat(self) -> Optional[str]:
        client_key = self.client.heartbeat()
        if client_key is not None:
            self.assigned_client = client_key
            print(f"[agent] Client {client_key} assigned. Stopping heartbeat.")
        return client_key

    def run(self, max_beats: Optional[int] = None) -> Optional[str]:
        """Heartbeat until assigned; return the client key, or ``None`` if *max_beats* ran out.

        Unreachable-registry errors are reported and retried on the next tick.
        Rejections from the registry itself (e.g. an unknown identity) stop the loop.
        """

        beats = 0
        while max_beats is None or beats < max_beats:
            beats += 1
            try:
                client_key = self.beat()
            except RegistryClientError as exc:
                if exc.status_code is not None:
                    raise
                print(f"[agent] Heartbeat failed: {exc}")
            else:
                if client_key is not None:
                    return client_key
            if max_beats is None or beats < max_beats:
                self._sleep(self.interval)
        return None


__all__ = ["HEARTBEAT_INTERVAL_S", "RelayAgent", "generate_keypair"]
