"""HTTP client for the registry and the client-side relay selection flow."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

REGISTRY_URL = os.getenv("REGISTRY_URL", "http://127.0.0.1:8000")
DEFAULT_TIMEOUT = 10.0

IDENTITY_HEADER = "X-Caller-Identity"


class RegistryClientError(Exception):
    """Raised when the registry rejects a call or cannot be reached.

    ``kind`` carries the registry error kind (``not_found``,
    ``already_registered``, ``store_unavailable``) when the registry reported
    one, and ``status_code`` the HTTP status when a response was received.
    """

    def __init__(self, message: str, kind: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


@dataclass
class RelayInfo:
    name: str
    public_key: str
    address: str
    reputation: int = 0


class RegistryClient:
    """Thin wrapper around the registry HTTP surface.

    Accepts either a base URL or a ready ``httpx.Client`` (for example
    FastAPI's ``TestClient``).
    """

    def __init__(
        self,
        base_url: str | httpx.Client = REGISTRY_URL,
        identity: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if isinstance(base_url, httpx.Client):
            self._http = base_url
        else:
            self._http = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)
        self.identity = identity

    def _headers(self) -> Dict[str, str]:
        if not self.identity:
            return {}
        return {IDENTITY_HEADER: self.identity}

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = self._http.request(method, path, json=json, headers=self._headers())
        except httpx.HTTPError as exc:
            raise RegistryClientError(f"Registry unreachable: {exc}") from exc

        if response.is_success:
            return response.json()

        kind = None
        message = response.text
        try:
            payload = response.json()
        except ValueError:
            payload = None
        detail = payload.get("detail") if isinstance(payload, dict) else None
        if isinstance(detail, dict):
            kind = detail.get("error")
            message = detail.get("message", message)
        elif detail is not None:
            message = str(detail)
        raise RegistryClientError(message, kind=kind, status_code=response.status_code)

    def register(self, name: str, public_key: str, address: str) -> str:
        body = self._request(
            "POST",
            "/register_server",
            json={"name": name, "public_key": public_key, "address": address},
        )
        return body["message"]

    def update_reputation(self, identity: str, delta: int) -> int:
        body = self._request("POST", "/update_reputation", json={"identity": identity, "delta": delta})
        return body["reputation"]

    def heartbeat(self) -> Optional[str]:
        """Send one heartbeat; return the assigned client public key, if any."""

        body = self._request("POST", "/heartbeat")
        return body.get("client_public_key")

    def select_server(self, name: str, client_public_key: str) -> RelayInfo:
        body = self._request(
            "POST",
            "/select_server",
            json={"name": name, "client_public_key": client_public_key},
        )
        return RelayInfo(name=name, public_key=body["public_key"], address=body["address"])

    def active_servers(self) -> List[RelayInfo]:
        body = self._request("GET", "/get_active_servers")
        return [RelayInfo(**entry) for entry in body]

    def close(self) -> None:
        self._http.close()


def connect(client: RegistryClient, client_public_key: str, name: Optional[str] = None) -> RelayInfo:
    """Pick an active relay and queue *client_public_key* for it.

    With *name* the relay of that name is requested; otherwise the active
    relay with the highest reputation is chosen.
    """

    relays = client.active_servers()
    if not relays:
        raise RegistryClientError("No active servers found", kind="not_found")
    print(f"[client] {len(relays)} active server(s)")
    for index, relay in enumerate(relays, start=1):
        print(f"[client]   {index}: {relay.name} ({relay.address}) reputation={relay.reputation}")

    if name is None:
        name = max(relays, key=lambda relay: relay.reputation).name
    elif not any(relay.name == name for relay in relays):
        raise RegistryClientError(f"Server '{name}' is not active", kind="not_found")

    chosen = client.select_server(name, client_public_key)
    print(f"[client] Selected {chosen.name} at {chosen.address}")
    return chosen


__all__ = ["REGISTRY_URL", "RegistryClient", "RegistryClientError", "RelayInfo", "connect"]
