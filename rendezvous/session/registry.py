"""
Session Registry

Tracks which connections are members of which session.

Invariants:
- A session with no members is never stored (created on first join,
  deleted when the last member leaves).
- A connection belongs to at most one session.

The registry is plain in-memory state and is not synchronized on its own.
The RelayDispatcher serializes every call under its lock.
"""

import logging

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Session id -> member connection ids, with a reverse index."""

    def __init__(self):
        # Primary index: session_id -> member conn_ids
        self._members: dict[str, set[str]] = {}

        # Reverse index: conn_id -> session_id
        self._session_by_conn: dict[str, str] = {}

    def join(self, session_id: str, conn_id: str) -> bool:
        """
        Add a connection to a session.

        A connection that is currently in another session leaves it first.

        Returns:
            True if membership changed, False if already a member
        """
        current = self._session_by_conn.get(conn_id)
        if current == session_id:
            return False
        if current is not None:
            self.leave(conn_id, current)

        members = self._members.setdefault(session_id, set())
        if not members:
            logger.info(f"Session created: {session_id}")
        members.add(conn_id)
        self._session_by_conn[conn_id] = session_id
        return True

    def leave(self, conn_id: str, session_id: str | None = None) -> str | None:
        """
        Remove a connection from a session.

        Args:
            conn_id: Connection leaving
            session_id: Session to leave; defaults to the current one

        Returns:
            The session left, or None if the connection was not a member
        """
        if session_id is None:
            session_id = self._session_by_conn.get(conn_id)
            if session_id is None:
                return None

        members = self._members.get(session_id)
        if members is None or conn_id not in members:
            return None

        members.discard(conn_id)
        if self._session_by_conn.get(conn_id) == session_id:
            del self._session_by_conn[conn_id]

        if not members:
            del self._members[session_id]
            logger.info(f"Session removed: {session_id}")

        return session_id

    def members(self, session_id: str) -> set[str]:
        """Copy of the member set; empty if the session does not exist."""
        return set(self._members.get(session_id, ()))

    def session_of(self, conn_id: str) -> str | None:
        return self._session_by_conn.get(conn_id)

    @property
    def session_count(self) -> int:
        return len(self._members)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._members

    def __len__(self) -> int:
        return len(self._members)
