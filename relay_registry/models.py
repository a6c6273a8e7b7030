"""Records held by the relay registry."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, Tuple

from pydantic import BaseModel, ConfigDict, StrictStr, TypeAdapter


@dataclass
class ServerRecord:
    """A relay node as registered under one caller identity."""

    name: str
    public_key: str
    address: str
    last_active: int
    reputation: int = 0

    def directory_entry(self) -> Tuple[str, str, str, int]:
        return (self.name, self.public_key, self.address, self.reputation)


@dataclass
class Registry:
    """Aggregate persisted as one snapshot.

    ``servers`` is keyed by caller identity, ``pending_assignments`` maps a
    server name to the client public key waiting for that server.
    """

    servers: Dict[str, ServerRecord] = field(default_factory=dict)
    pending_assignments: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "servers": {identity: asdict(record) for identity, record in self.servers.items()},
            "pending_assignments": dict(self.pending_assignments),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Registry":
        """Build a registry from a decoded snapshot.

        Field types are checked strictly (no coercion, booleans are not
        integers); a mismatch raises ``pydantic.ValidationError``, which is a
        ``ValueError``.
        """

        servers = data["servers"]
        if not isinstance(servers, dict):
            raise ValueError("servers must be an object")
        pending = _STORED_PENDING.validate_python(data["pending_assignments"])
        return cls(
            servers={
                identity: ServerRecord(**_StoredRecord.model_validate(record).model_dump())
                for identity, record in servers.items()
            },
            pending_assignments=pending,
        )


class _StoredRecord(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    name: str
    public_key: str
    address: str
    last_active: int
    reputation: int


_STORED_PENDING = TypeAdapter(Dict[str, StrictStr])


__all__ = ["Registry", "ServerRecord"]
