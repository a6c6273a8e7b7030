"""FastAPI application exposing the relay registry over HTTP."""

from __future__ import annotations

import os
from typing import Callable, List, Optional

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from .errors import ErrorKind, RegistryError
from .registry import RegistryService
from .storage import JsonFileStore, MemoryStore

HOST = os.getenv("REGISTRY_HOST", "0.0.0.0")
PORT = int(os.getenv("REGISTRY_PORT", "8000"))

IDENTITY_HEADER = "X-Caller-Identity"
# Admin endpoints are disabled unless an admin identity is configured
ADMIN_IDENTITY = os.getenv("REGISTRY_ADMIN_IDENTITY")

_STATUS_BY_KIND = {
    ErrorKind.ALREADY_REGISTERED: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STORE_UNAVAILABLE: 503,
    ErrorKind.ALREADY_INITIALIZED: 409,
}

app = FastAPI(title="Relay Rendezvous Registry", version="1.0.0")

_service = RegistryService(JsonFileStore())


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    public_key: str = Field(min_length=1)
    address: str = Field(min_length=1)


class MessageResponse(BaseModel):
    message: str


class ReputationRequest(BaseModel):
    identity: str = Field(min_length=1)
    delta: int


class ReputationResponse(MessageResponse):
    reputation: int


class HeartbeatResponse(MessageResponse):
    status: str
    client_public_key: Optional[str] = None


class SelectRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    client_public_key: str = Field(min_length=1)


class SelectResponse(BaseModel):
    public_key: str
    address: str


class ActiveServer(BaseModel):
    name: str
    public_key: str
    address: str
    reputation: int


class InitializeRequest(BaseModel):
    force: bool = False


class EvictRequest(BaseModel):
    max_age: int = Field(ge=0, description="Seconds of inactivity after which a record is removed")


class EvictResponse(BaseModel):
    evicted: List[str]


def _http_error(exc: RegistryError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_KIND[exc.kind], detail=exc.as_dict())


def _require_identity(identity: Optional[str]) -> str:
    if not identity:
        raise HTTPException(status_code=401, detail=f"Missing {IDENTITY_HEADER} header")
    return identity


def _require_admin(identity: Optional[str]) -> str:
    identity = _require_identity(identity)
    if not ADMIN_IDENTITY or identity != ADMIN_IDENTITY:
        raise HTTPException(status_code=403, detail="Administrative access required")
    return identity


@app.post("/register_server", response_model=MessageResponse)
def register_server(
    payload: RegisterRequest,
    x_caller_identity: Optional[str] = Header(default=None),
) -> MessageResponse:
    """Register the calling relay node under its identity."""

    identity = _require_identity(x_caller_identity)
    try:
        record = _service.register(identity, payload.name, payload.public_key, payload.address)
    except RegistryError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(
        message=f"Server '{record.name}' registered successfully with address {record.address} by caller {identity}"
    )


@app.post("/update_reputation", response_model=ReputationResponse)
def update_reputation(payload: ReputationRequest) -> ReputationResponse:
    try:
        reputation = _service.adjust_reputation(payload.identity, payload.delta)
    except RegistryError as exc:
        raise _http_error(exc) from exc
    return ReputationResponse(
        message=f"Reputation updated for {payload.identity}: new reputation {reputation}",
        reputation=reputation,
    )


@app.post("/heartbeat", response_model=HeartbeatResponse)
def heartbeat(x_caller_identity: Optional[str] = Header(default=None)) -> HeartbeatResponse:
    """Refresh liveness, or deliver a pending client assignment to the caller."""

    identity = _require_identity(x_caller_identity)
    try:
        outcome = _service.heartbeat(identity)
    except RegistryError as exc:
        raise _http_error(exc) from exc
    if outcome.assignment_delivered:
        return HeartbeatResponse(
            status="assignment_delivered",
            message=f"Client {outcome.client_public_key} assigned. Stop heartbeating.",
            client_public_key=outcome.client_public_key,
        )
    return HeartbeatResponse(status="liveness_recorded", message=f"Heartbeat updated for caller {identity}")


@app.post("/select_server", response_model=SelectResponse)
def select_server(payload: SelectRequest) -> SelectResponse:
    try:
        public_key, address = _service.select_server(payload.name, payload.client_public_key)
    except RegistryError as exc:
        raise _http_error(exc) from exc
    return SelectResponse(public_key=public_key, address=address)


@app.get("/get_active_servers", response_model=List[ActiveServer])
def get_active_servers() -> List[ActiveServer]:
    """Return the relays that sent a heartbeat within the liveness window."""

    try:
        entries = _service.active_servers()
    except RegistryError as exc:
        raise _http_error(exc) from exc
    return [
        ActiveServer(name=name, public_key=public_key, address=address, reputation=reputation)
        for name, public_key, address, reputation in entries
    ]


@app.post("/admin/initialize", response_model=MessageResponse)
def initialize_registry(
    payload: InitializeRequest,
    x_caller_identity: Optional[str] = Header(default=None),
) -> MessageResponse:
    _require_admin(x_caller_identity)
    try:
        _service.initialize(force=payload.force)
    except RegistryError as exc:
        raise _http_error(exc) from exc
    return MessageResponse(message="Registry initialized")


@app.post("/admin/evict", response_model=EvictResponse)
def evict_stale(
    payload: EvictRequest,
    x_caller_identity: Optional[str] = Header(default=None),
) -> EvictResponse:
    _require_admin(x_caller_identity)
    try:
        evicted = _service.evict_stale(payload.max_age)
    except RegistryError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"error": ErrorKind.INVALID_ARGUMENT.value, "message": str(exc)},
        ) from exc
    return EvictResponse(evicted=evicted)


def get_service() -> RegistryService:
    return _service


def reset_state(store=None, clock: Callable[[], int] | None = None) -> RegistryService:
    """Swap in a fresh service backed by *store*.

    Without a store the service gets an empty, initialized in-memory one (used by tests).
    """

    global _service
    if store is None:
        store = MemoryStore()
        store.initialize()
    if clock is None:
        _service = RegistryService(store)
    else:
        _service = RegistryService(store, clock=clock)
    return _service


__all__ = ["ADMIN_IDENTITY", "IDENTITY_HEADER", "app", "get_service", "reset_state"]
