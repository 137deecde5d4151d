"""
Relay Dispatcher

The control plane of the relay. Classifies inbound envelopes, keeps session
membership up to date and forwards signaling events to the right peers.

Supported inbound types:
- join -> joined (to the joiner) + peer-joined (to the others)
- leave -> peer-left (to the remaining members)
- offer / answer / candidate -> relayed with ``from`` set to the sender,
  to one member (targetConnId) or to every other member

Both registries are shared by all connection tasks. Every read-modify-write
runs under a single asyncio.Lock, and nothing awaits network I/O while the
lock is held: delivery is a non-blocking put on each recipient's outbound
queue, so a slow peer never stalls the others.
"""

import asyncio
import hmac
import logging
from typing import Any

from rendezvous.exceptions import QueueClosedError, QueueFullError
from rendezvous.protocol.envelope import (
    RELAYED_TYPES,
    DecodeFailure,
    Envelope,
    MessageType,
    create_error,
    create_joined,
    create_peer_joined,
    create_peer_left,
    create_relayed,
    decode,
)
from rendezvous.session import (
    ConnectionRecord,
    ConnectionRegistry,
    ConnectionRole,
    Outbox,
    SessionRegistry,
)

logger = logging.getLogger(__name__)

# Event types that may be fanned out to session members
DISPATCHABLE_TYPES = RELAYED_TYPES | {
    MessageType.PEER_JOINED.value,
    MessageType.PEER_LEFT.value,
}


class RelayDispatcher:
    """
    Routes signaling messages between members of a session.

    One instance serves the whole process.
    """

    def __init__(self, secret: str | None = None):
        """
        Initialize the dispatcher.

        Args:
            secret: Shared secret required on join. None disables the check.
        """
        self._secret = secret
        self._sessions = SessionRegistry()
        self._connections = ConnectionRegistry()

        # Serializes all registry mutations
        self._lock = asyncio.Lock()

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(
        self,
        outbox: Outbox,
        role: ConnectionRole = ConnectionRole.PEER,
        conn_id: str | None = None
    ) -> ConnectionRecord:
        """Register a newly accepted connection and return its record."""
        async with self._lock:
            record = self._connections.add(outbox, role=role, conn_id=conn_id)
            total = self._connections.connection_count

        logger.info(f"Connection accepted: {record.conn_id} ({record.role.value}). Total: {total}")
        return record

    async def disconnect(self, conn_id: str) -> None:
        """
        Deregister a closed connection.

        Leaves its session first, so the remaining members get peer-left
        and no task can observe a stale membership afterwards.
        """
        async with self._lock:
            record = self._connections.get(conn_id)
            if record is None:
                return
            self._leave_locked(record)
            self._connections.remove(conn_id)
            total = self._connections.connection_count

        logger.info(f"Connection closed: {conn_id}. Total: {total}")

    # =========================================================================
    # Inbound messages
    # =========================================================================

    async def handle(self, conn_id: str, raw: bytes | str) -> None:
        """
        Process one raw inbound message from a connection.

        Malformed input and unknown types are logged and dropped; nothing
        is sent back to peers for them.
        """
        envelope = decode(raw)
        if isinstance(envelope, DecodeFailure):
            logger.warning(f"Invalid message from {conn_id}: {envelope.reason}")
            return

        handlers = {
            MessageType.JOIN.value: self._handle_join,
            MessageType.LEAVE.value: self._handle_leave,
            MessageType.OFFER.value: self._handle_relay,
            MessageType.ANSWER.value: self._handle_relay,
            MessageType.CANDIDATE.value: self._handle_relay,
        }

        handler = handlers.get(envelope.type)
        if handler is None:
            logger.warning(f"Unknown event type from {conn_id}: {envelope.type}")
            return

        logger.debug(f"Received {envelope.type} from {conn_id}")
        await handler(conn_id, envelope)

    async def _handle_join(self, conn_id: str, envelope: Envelope) -> None:
        if not envelope.session_id:
            logger.warning(f"Join without sessionId from {conn_id}")
            self._send(conn_id, create_error("SESSION_ID_REQUIRED", "sessionId required"))
            return

        if not self._secret_matches(envelope.secret):
            logger.warning(f"Rejected join for {conn_id}: invalid secret")
            self._send(conn_id, create_error("INVALID_SECRET", "invalid secret"))
            return

        await self.join(conn_id, envelope.session_id)

    async def _handle_leave(self, conn_id: str, envelope: Envelope) -> None:
        await self.leave(conn_id)

    async def _handle_relay(self, conn_id: str, envelope: Envelope) -> None:
        """
        Handle offer / answer / candidate.

        The session is the explicit sessionId or the sender's current one,
        and the sender must be a member of it.
        """
        body = envelope.relay_body()
        if not body:
            logger.warning(f"Dropping {envelope.type} from {conn_id}: empty body")
            return

        async with self._lock:
            record = self._connections.get(conn_id)
            if record is None:
                return

            session_id = envelope.session_id or record.session_id
            if session_id is None:
                logger.warning(f"Dropping {envelope.type} from {conn_id}: not in a session")
                return
            if self._sessions.session_of(conn_id) != session_id:
                logger.warning(
                    f"Dropping {envelope.type} from {conn_id}: not a member of {session_id}"
                )
                return

            delivered = self._route_locked(
                conn_id,
                session_id,
                create_relayed(envelope.type, conn_id, body),
                envelope.target_conn_id,
            )

        logger.debug(f"Relayed {envelope.type} from {conn_id} to {delivered} peer(s)")

    def _secret_matches(self, presented: str | None) -> bool:
        if self._secret is None:
            return True
        if presented is None:
            return False
        return hmac.compare_digest(presented.encode("utf-8"), self._secret.encode("utf-8"))

    # =========================================================================
    # Membership
    # =========================================================================

    async def join(self, conn_id: str, session_id: str) -> bool:
        """
        Put a connection into a session.

        The joiner receives ``joined`` with the members present before it
        was added; the others receive ``peer-joined``. A connection in
        another session leaves it first. Re-joining the current session
        only re-sends the snapshot.

        Returns:
            True if membership changed
        """
        async with self._lock:
            record = self._connections.get(conn_id)
            if record is None:
                return False

            if record.session_id == session_id:
                participants = sorted(self._sessions.members(session_id) - {conn_id})
                self._send(conn_id, create_joined(session_id, participants))
                return False

            if record.session_id is not None:
                self._leave_locked(record)

            participants = sorted(self._sessions.members(session_id))
            self._sessions.join(session_id, conn_id)
            record.session_id = session_id

            self._send(conn_id, create_joined(session_id, participants))
            self._route_locked(conn_id, session_id, create_peer_joined(conn_id))

        logger.info(f"Connection {conn_id} joined session {session_id} ({len(participants)} other peer(s))")
        return True

    async def leave(self, conn_id: str) -> str | None:
        """
        Remove a connection from its current session.

        Returns:
            The session left, or None if it was not in one
        """
        async with self._lock:
            record = self._connections.get(conn_id)
            if record is None:
                return None
            return self._leave_locked(record)

    def _leave_locked(self, record: ConnectionRecord) -> str | None:
        """Leave the current session (must be called with lock held)."""
        session_id = record.session_id or self._sessions.session_of(record.conn_id)
        if session_id is None:
            return None

        # Notify before the registry drops an emptied session
        self._route_locked(record.conn_id, session_id, create_peer_left(record.conn_id))
        self._sessions.leave(record.conn_id, session_id)
        record.session_id = None

        remaining = len(self._sessions.members(session_id))
        logger.info(f"Connection {record.conn_id} left session {session_id}. Peers remaining: {remaining}")
        return session_id

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(
        self,
        sender_id: str,
        session_id: str,
        event_type: str,
        payload: dict[str, Any],
        target_conn_id: str | None = None
    ) -> int:
        """
        Deliver an event to members of a session.

        Args:
            sender_id: Connection the event originates from
            session_id: Session whose members are eligible recipients
            event_type: offer, answer, candidate, peer-joined or peer-left
            payload: Event body; ``from`` is always overwritten with sender_id
            target_conn_id: Deliver only to this member. Dropped silently if
                it is not currently in the session.

        Returns:
            Number of recipients the message was enqueued for
        """
        if event_type not in DISPATCHABLE_TYPES:
            logger.warning(f"Refusing to dispatch unknown event type: {event_type}")
            return 0

        envelope = create_relayed(event_type, sender_id, payload)
        async with self._lock:
            return self._route_locked(sender_id, session_id, envelope, target_conn_id)

    def _route_locked(
        self,
        sender_id: str,
        session_id: str,
        envelope: Envelope,
        target_conn_id: str | None = None
    ) -> int:
        """Select recipients and enqueue (must be called with lock held)."""
        members = self._sessions.members(session_id)

        if target_conn_id is not None:
            recipients = [target_conn_id] if target_conn_id in members else []
        else:
            recipients = [m for m in members if m != sender_id]

        if not recipients:
            return 0

        message = envelope.to_json()
        return sum(1 for conn_id in recipients if self._deliver(conn_id, message))

    def _send(self, conn_id: str, envelope: Envelope) -> bool:
        """Send a relay-originated envelope to one connection."""
        return self._deliver(conn_id, envelope.to_json())

    def _deliver(self, conn_id: str, message: str) -> bool:
        outbox = self._connections.outbox(conn_id)
        if outbox is None:
            return False

        try:
            outbox.put_nowait(message)
            return True
        except QueueFullError as e:
            logger.warning(f"Dropping message for slow connection: {e}")
        except QueueClosedError:
            logger.debug(f"Dropping message for closing connection {conn_id}")
        return False

    # =========================================================================
    # Introspection
    # =========================================================================

    def members(self, session_id: str) -> set[str]:
        return self._sessions.members(session_id)

    def session_of(self, conn_id: str) -> str | None:
        return self._sessions.session_of(conn_id)

    def get_connection(self, conn_id: str) -> ConnectionRecord | None:
        return self._connections.get(conn_id)

    @property
    def connection_count(self) -> int:
        return self._connections.connection_count

    @property
    def session_count(self) -> int:
        return self._sessions.session_count
