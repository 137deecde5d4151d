"""
Relay Message Envelope

Every message crossing the relay is a JSON object carrying a ``type`` tag.
Outbound messages always use the ``{"type": ..., "payload": {...}}`` shape.
Inbound messages may additionally carry routing fields at the top level:

- sessionId: the session (room) the message concerns
- targetConnId: a single recipient inside that session (unicast)
- secret: shared secret presented on join

Clients that do not nest their data under ``payload`` (e.g. ``{"type":
"offer", "sdp": "..."}``) are accepted as well; unknown top-level fields are
kept on the envelope and relayed as part of the body.

Anything that is not a JSON object with a string ``type`` decodes to a
DecodeFailure holding the raw bytes, so stream transports can still forward
it verbatim.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class MessageType(str, Enum):
    """Envelope type vocabulary."""
    # Signaling (client -> relay)
    JOIN = "join"
    LEAVE = "leave"
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"

    # Notifications (relay -> client)
    JOINED = "joined"  # Snapshot of the session sent to the joiner
    PEER_JOINED = "peer-joined"
    PEER_LEFT = "peer-left"
    ERROR = "error"
    STATUS = "status"  # Bridge progress and failures

    # Bridge binding (client -> relay, stream-bridging endpoint only)
    CONFIG = "config"


# Types whose body is forwarded to other session members
RELAYED_TYPES = frozenset({
    MessageType.OFFER.value,
    MessageType.ANSWER.value,
    MessageType.CANDIDATE.value,
})

# Older clients (Unity in particular) spell the candidate event differently
TYPE_ALIASES = {
    "ice": MessageType.CANDIDATE.value,
    "ice-candidate": MessageType.CANDIDATE.value,
}

_ROUTING_FIELDS = (
    ("session_id", "sessionId"),
    ("target_conn_id", "targetConnId"),
    ("secret", "secret"),
)


class Envelope(BaseModel):
    """
    A single relay message.

    Only ``type`` is required. Extra top-level fields are preserved in
    ``model_extra`` so that flat-style clients round-trip unchanged.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = Field(
        ...,
        min_length=1,
        description="Event tag, see MessageType"
    )
    session_id: str | None = Field(
        default=None,
        alias="sessionId",
        description="Session the message targets. Falls back to the sender's "
                    "current session for relayed events."
    )
    target_conn_id: str | None = Field(
        default=None,
        alias="targetConnId",
        description="Single recipient within the session. None means broadcast."
    )
    secret: str | None = Field(
        default=None,
        description="Shared secret presented on join"
    )
    payload: Any = Field(
        default=None,
        description="Type-specific content"
    )

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if isinstance(value, MessageType):
            return value.value
        if isinstance(value, str):
            return TYPE_ALIASES.get(value, value)
        return value

    def relay_body(self) -> dict[str, Any]:
        """
        Content forwarded to other peers.

        Everything except the routing fields: the ``payload`` (when given)
        plus any flat top-level fields.
        """
        body = dict(self.model_extra or {})
        if "payload" in self.model_fields_set and self.payload is not None:
            body["payload"] = self.payload
        return body

    def to_wire(self) -> dict[str, Any]:
        """Wire representation: aliases, unset routing fields omitted."""
        wire: dict[str, Any] = {"type": self.type}
        for name, alias in _ROUTING_FIELDS:
            value = getattr(self, name)
            if value is not None:
                wire[alias] = value
        if "payload" in self.model_fields_set:
            wire["payload"] = self.payload
        if self.model_extra:
            wire.update(self.model_extra)
        return wire

    def to_json(self) -> str:
        """Compact, single-line JSON text."""
        return json.dumps(self.to_wire(), separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class DecodeFailure:
    """Input that is not a valid envelope. Keeps the bytes for opaque forwarding."""
    raw: bytes
    reason: str

    @property
    def text(self) -> str:
        return self.raw.decode("utf-8", errors="replace")


def encode(envelope: Envelope) -> bytes:
    """Serialize an envelope to UTF-8 JSON bytes."""
    return envelope.to_json().encode("utf-8")


def decode(raw: bytes | str) -> Envelope | DecodeFailure:
    """
    Parse raw input into an Envelope.

    Returns a DecodeFailure instead of raising when the input is not a JSON
    object with a non-empty string ``type``.
    """
    if isinstance(raw, str):
        data = raw.encode("utf-8", errors="replace")
    else:
        data = bytes(raw)

    try:
        document = json.loads(data)
    except (ValueError, RecursionError) as e:
        return DecodeFailure(data, f"invalid JSON: {e}")

    if not isinstance(document, dict):
        return DecodeFailure(data, "envelope must be a JSON object")
    if "type" not in document:
        return DecodeFailure(data, "missing type field")

    try:
        return Envelope.model_validate(document)
    except ValidationError as e:
        return DecodeFailure(data, f"invalid envelope ({e.error_count()} error(s))")


# === Convenience constructors for relay-originated messages ===

def create_joined(session_id: str, participants: list[str]) -> Envelope:
    """
    Create the snapshot sent to a connection that just joined.

    ``participants`` lists the other members at the moment of joining.
    """
    return Envelope(
        type=MessageType.JOINED,
        payload={"sessionId": session_id, "participants": list(participants)}
    )


def create_peer_joined(conn_id: str) -> Envelope:
    """Announce a new member to the rest of the session."""
    return create_relayed(MessageType.PEER_JOINED.value, conn_id, {"socketId": conn_id})


def create_peer_left(conn_id: str) -> Envelope:
    """Announce a departed member to the rest of the session."""
    return create_relayed(MessageType.PEER_LEFT.value, conn_id, {"socketId": conn_id})


def create_error(code: str, message: str) -> Envelope:
    return Envelope(type=MessageType.ERROR, payload={"code": code, "message": message})


def create_status(state: str, message: str | None = None) -> Envelope:
    payload: dict[str, Any] = {"state": state}
    if message is not None:
        payload["message"] = message
    return Envelope(type=MessageType.STATUS, payload=payload)


def create_relayed(event_type: str, sender_id: str, body: dict[str, Any]) -> Envelope:
    """
    Create the envelope delivered for a relayed event.

    ``from`` always names the real sender; a value supplied in ``body`` is
    overwritten.
    """
    return Envelope(type=event_type, payload={**body, "from": sender_id})
