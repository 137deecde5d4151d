# Rendezvous Relay
# Signaling relay for peers negotiating a session, plus a WebSocket-to-TCP stream bridge

__version__ = "0.1.0"

# Re-export the relay core for convenience
from rendezvous.protocol import (
    Envelope,
    MessageType,
    DecodeFailure,
    decode,
    encode,
    StreamFramer,
)
from rendezvous.session import (
    SessionRegistry,
    ConnectionRegistry,
    ConnectionRole,
)
from rendezvous.routing import RelayDispatcher

__all__ = [
    "__version__",
    # Protocol
    "Envelope",
    "MessageType",
    "DecodeFailure",
    "decode",
    "encode",
    "StreamFramer",
    # Session
    "SessionRegistry",
    "ConnectionRegistry",
    "ConnectionRole",
    # Routing
    "RelayDispatcher",
]
