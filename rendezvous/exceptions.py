"""
Relay Exceptions

Errors raised inside the relay core. None of them is fatal to the process:
each is scoped to a single connection or a single message.
"""


class RelayError(Exception):
    """Base class for relay errors."""
    pass


class QueueFullError(RelayError):
    """Raised when a connection's outbound queue is full (backpressure)."""
    def __init__(self, conn_id: str, queue_size: int):
        self.conn_id = conn_id
        self.queue_size = queue_size
        super().__init__(f"Outbound queue full for {conn_id} (size={queue_size})")


class QueueClosedError(RelayError):
    """Raised when enqueueing on a queue whose connection is gone."""
    def __init__(self, conn_id: str):
        self.conn_id = conn_id
        super().__init__(f"Outbound queue closed for {conn_id}")


class FrameTooLargeError(RelayError):
    """Raised when a stream peer sends more unterminated bytes than allowed."""
    def __init__(self, buffered: int, limit: int):
        self.buffered = buffered
        self.limit = limit
        super().__init__(
            f"Unterminated stream frame of {buffered} bytes exceeds limit {limit}"
        )


class BridgeConfigError(RelayError):
    """Raised when a bridge configuration message is unusable."""
    pass
