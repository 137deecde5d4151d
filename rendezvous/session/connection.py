"""
Connection Registry

Every accepted transport connection gets a stable opaque handle (conn_id)
at accept time. All relay state is keyed by that handle, never by the
transport object, and the registry keeps the outbound handle used to reach
the connection.

Like SessionRegistry, this is not synchronized on its own; the
RelayDispatcher holds its lock around every mutation.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Protocol
from uuid import uuid4

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ConnectionRole(str, Enum):
    """What kind of endpoint a connection is."""
    PEER = "peer"            # Signaling client on the relay endpoint
    INITIATOR = "initiator"  # Message-oriented side of a bridge pair


class Outbox(Protocol):
    """Send capability for a connection: enqueue only, never block."""

    def put_nowait(self, message: str) -> None:
        ...


def new_conn_id() -> str:
    """Generate a connection handle, unique for the process lifetime."""
    return uuid4().hex


class ConnectionRecord(BaseModel):
    """The relay's view of one live connection."""

    conn_id: str = Field(
        default_factory=new_conn_id,
        description="Opaque handle assigned at accept time"
    )
    role: ConnectionRole = Field(
        default=ConnectionRole.PEER,
        description="Transport role of this endpoint"
    )
    session_id: str | None = Field(
        default=None,
        description="Session this connection is currently a member of"
    )
    connected_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the connection was accepted"
    )


class ConnectionRegistry:
    """conn_id -> ConnectionRecord, plus the outbound handle per connection."""

    def __init__(self):
        # Primary index: conn_id -> ConnectionRecord
        self._records: dict[str, ConnectionRecord] = {}

        # Send handles: conn_id -> Outbox
        self._outboxes: dict[str, Outbox] = {}

    def add(
        self,
        outbox: Outbox,
        role: ConnectionRole = ConnectionRole.PEER,
        conn_id: str | None = None
    ) -> ConnectionRecord:
        """
        Register a connection.

        Args:
            outbox: Where messages for this connection are enqueued
            role: Transport role
            conn_id: Pre-assigned handle; generated when omitted

        Raises:
            ValueError: If the handle is already registered
        """
        record = ConnectionRecord(role=role)
        if conn_id is not None:
            record.conn_id = conn_id
        if record.conn_id in self._records:
            raise ValueError(f"Connection already registered: {record.conn_id}")

        self._records[record.conn_id] = record
        self._outboxes[record.conn_id] = outbox
        return record

    def remove(self, conn_id: str) -> ConnectionRecord | None:
        """Deregister a connection. Returns the record, or None if unknown."""
        self._outboxes.pop(conn_id, None)
        return self._records.pop(conn_id, None)

    def get(self, conn_id: str) -> ConnectionRecord | None:
        return self._records.get(conn_id)

    def outbox(self, conn_id: str) -> Outbox | None:
        return self._outboxes.get(conn_id)

    @property
    def connection_count(self) -> int:
        return len(self._records)

    def __contains__(self, conn_id: object) -> bool:
        return conn_id in self._records

    def __len__(self) -> int:
        return len(self._records)
