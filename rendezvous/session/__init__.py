# Session Layer
# Session membership and live connection tracking

from rendezvous.session.registry import SessionRegistry
from rendezvous.session.connection import (
    ConnectionRegistry,
    ConnectionRecord,
    ConnectionRole,
    Outbox,
    new_conn_id,
)

__all__ = [
    "SessionRegistry",
    "ConnectionRegistry",
    "ConnectionRecord",
    "ConnectionRole",
    "Outbox",
    "new_conn_id",
]
