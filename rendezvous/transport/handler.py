"""
WebSocket Handler

Connection lifecycle for the signaling endpoint. One coroutine per
connection reads frames and hands each one to the RelayDispatcher;
outbound messages go through the connection's own queue.

Cleanup always runs, however the connection ends: the dispatcher removes
the connection from its session (notifying the remaining peers) before
the outbound queue is stopped.
"""

import logging

from fastapi import WebSocket, WebSocketDisconnect

from rendezvous.routing import RelayDispatcher
from rendezvous.session import ConnectionRole, new_conn_id
from rendezvous.transport.queue import ConnectionQueue

logger = logging.getLogger(__name__)


async def receive_frame(websocket: WebSocket) -> str | bytes | None:
    """
    Receive one text or binary frame.

    Returns:
        The frame data, or None once the client has disconnected
    """
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        return None

    text = message.get("text")
    if text is not None:
        return text
    return message.get("bytes") or b""


class WebSocketHandler:
    """Handles WebSocket connections on the signaling endpoint."""

    def __init__(self, dispatcher: RelayDispatcher, max_queue_size: int = 200):
        """
        Initialize the handler.

        Args:
            dispatcher: Shared relay dispatcher
            max_queue_size: Outbound queue depth per connection
        """
        self._dispatcher = dispatcher
        self._max_queue_size = max_queue_size

    async def handle_connection(self, websocket: WebSocket) -> None:
        """
        Handle a WebSocket connection lifecycle.

        Args:
            websocket: The WebSocket connection
        """
        await websocket.accept()

        conn_id = new_conn_id()
        outbox = ConnectionQueue(conn_id, websocket.send_text, max_size=self._max_queue_size)
        await outbox.start()

        try:
            await self._dispatcher.connect(outbox, role=ConnectionRole.PEER, conn_id=conn_id)

            # Main message loop
            while True:
                data = await receive_frame(websocket)
                if data is None:
                    break

                await self._dispatcher.handle(conn_id, data)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected: {conn_id}")

        except Exception as e:
            logger.error(f"WebSocket error for {conn_id}: {e}")

        finally:
            await self._dispatcher.disconnect(conn_id)
            await outbox.stop()
