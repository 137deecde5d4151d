import json

import pytest

from rendezvous.exceptions import QueueClosedError, QueueFullError
from rendezvous.routing import RelayDispatcher


class FakeOutbox:
    """Collects enqueued messages instead of writing to a socket."""

    def __init__(self, conn_id: str = "fake", full: bool = False, closed: bool = False):
        self.conn_id = conn_id
        self.full = full
        self.closed = closed
        self.sent: list[str] = []

    def put_nowait(self, message: str) -> None:
        if self.closed:
            raise QueueClosedError(self.conn_id)
        if self.full:
            raise QueueFullError(self.conn_id, 0)
        self.sent.append(message)

    def messages(self) -> list:
        """Sent messages parsed as JSON where possible."""
        parsed = []
        for message in self.sent:
            try:
                parsed.append(json.loads(message))
            except (ValueError, RecursionError):
                parsed.append(message)
        return parsed

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages() if isinstance(m, dict)]

    def clear(self) -> None:
        self.sent.clear()


def join(session_id: str, **extra) -> str:
    return json.dumps({"type": "join", "sessionId": session_id, **extra})


@pytest.fixture
def dispatcher() -> RelayDispatcher:
    return RelayDispatcher()


@pytest.fixture
def secret_dispatcher() -> RelayDispatcher:
    return RelayDispatcher(secret="s3cret")
