# Protocol Layer
# Wire envelope codec and newline framing for stream transports

from rendezvous.protocol.envelope import (
    Envelope,
    MessageType,
    DecodeFailure,
    RELAYED_TYPES,
    decode,
    encode,
    create_joined,
    create_peer_joined,
    create_peer_left,
    create_error,
    create_status,
    create_relayed,
)
from rendezvous.protocol.framing import StreamFramer, feed

__all__ = [
    "Envelope",
    "MessageType",
    "DecodeFailure",
    "RELAYED_TYPES",
    "decode",
    "encode",
    "create_joined",
    "create_peer_joined",
    "create_peer_left",
    "create_error",
    "create_status",
    "create_relayed",
    "StreamFramer",
    "feed",
]
