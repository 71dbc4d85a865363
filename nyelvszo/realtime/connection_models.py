"""
Data models for connection management.

This module defines the per-connection record owned by the ConnectionRegistry
and the transport interface it writes through.
"""

# pylint: disable=too-many-instance-attributes  # Reason: Connection record captures complete session state

from dataclasses import dataclass, field
from typing import Any, Protocol

from ..auth.roles import Role
from ..auth.tokens import Identity


class Transport(Protocol):
    """A writable bidirectional connection handle."""

    @property
    def is_open(self) -> bool: ...

    async def send_json(self, frame: dict[str, Any]) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


@dataclass
class Connection:
    """
    One live bidirectional session.

    The transport handle is owned by the ConnectionRegistry entry; other
    components refer to connections by id only.
    """

    connection_id: str
    transport: Transport
    connected_at: float
    last_seen: float
    remote_address: str | None = None
    user_agent: str | None = None
    user_id: str | None = None
    email: str | None = None
    role: Role | None = None
    subscriptions: set[str] = field(default_factory=set)
    rooms: set[str] = field(default_factory=set)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def effective_role(self) -> Role:
        """Bound role, or the anonymous tier before authentication."""
        return self.role if self.role is not None else Role.ANONYMOUS

    def bind(self, identity: Identity) -> None:
        self.user_id = identity.user_id
        self.email = identity.email
        self.role = identity.role

    def user_summary(self) -> dict[str, Any]:
        """User reference carried in collaboration frames."""
        return {"userId": self.user_id, "email": self.email}

    def to_session_dict(self) -> dict[str, Any]:
        """Session listing entry for the management surface."""
        return {
            "clientId": self.connection_id,
            "userId": self.user_id,
            "email": self.email,
            "role": int(self.role) if self.role is not None else None,
            "connectedAt": self.connected_at,
            "lastSeen": self.last_seen,
            "remoteAddress": self.remote_address,
            "userAgent": self.user_agent,
            "subscriptions": sorted(self.subscriptions),
            "rooms": sorted(self.rooms),
        }
