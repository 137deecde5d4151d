"""
Connection Outbound Queue

Per-connection outbound queue with a single writer task.

Design:
- Each connection gets a dedicated bounded asyncio.Queue
- One writer coroutine drains the queue and sends on the WebSocket, so
  sends on one connection never interleave
- Producers (the dispatcher, the bridge reader) enqueue without blocking;
  a full queue raises QueueFullError and only that message is lost
- On close the queue can either be drained (so a final status message
  still goes out) or dropped immediately
"""

import asyncio
import logging
from typing import Awaitable, Callable

from rendezvous.exceptions import QueueClosedError, QueueFullError

logger = logging.getLogger(__name__)

# Shutdown signal for the writer loop
_CLOSE = object()


class ConnectionQueue:
    """
    Outbound message queue for a single connection.

    Implements the Outbox protocol expected by the dispatcher.
    """

    def __init__(
        self,
        conn_id: str,
        send_fn: Callable[[str], Awaitable[None]],
        max_size: int = 200
    ):
        """
        Initialize connection queue.

        Args:
            conn_id: Connection identifier (for logging)
            send_fn: Async function that writes one text frame
            max_size: Max queue depth before messages are refused
        """
        self.conn_id = conn_id
        self._send_fn = send_fn
        self._max_size = max_size
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self._writer_task: asyncio.Task | None = None
        self._closed = False

    async def start(self) -> None:
        """Start the writer task."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(
                self._writer_loop(),
                name=f"outbox_writer_{self.conn_id}"
            )

    async def stop(self, drain: bool = False, timeout: float = 1.0) -> None:
        """
        Stop the writer task.

        Args:
            drain: Let already queued messages go out first
            timeout: Max time to wait for the drain
        """
        self._closed = True
        task, self._writer_task = self._writer_task, None
        if task is None:
            return

        if drain and not task.done():
            try:
                self._queue.put_nowait(_CLOSE)
                await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
                return
            except asyncio.QueueFull:
                logger.warning(f"Queue full on close for {self.conn_id}, dropping backlog")
            except asyncio.TimeoutError:
                logger.warning(f"Timed out draining queue for {self.conn_id}")

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def put_nowait(self, message: str) -> None:
        """
        Enqueue a message without blocking.

        Raises:
            QueueClosedError: If the queue has been stopped
            QueueFullError: If the queue is at capacity (backpressure)
        """
        if self._closed:
            raise QueueClosedError(self.conn_id)

        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            raise QueueFullError(self.conn_id, self._max_size)

    @property
    def qsize(self) -> int:
        """Current queue depth."""
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    async def _writer_loop(self) -> None:
        """Drain the queue onto the connection until closed or a send fails."""
        while True:
            message = await self._queue.get()
            try:
                if message is _CLOSE:
                    break
                await self._send_fn(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Send failed for {self.conn_id}: {e}")
                # Connection is gone; refuse further messages
                self._closed = True
                break
            finally:
                self._queue.task_done()
