"""
Stream Bridge

Pairs one WebSocket client with one TCP backend (typically a Unity game
server) and translates between message frames and a newline-delimited
byte stream.

Lifecycle of a pair:
1. UNBOUND - client connected, no backend yet. The first ``config``
   message names the backend: {"type": "config", "backendHost": ..., "backendPort": ...}
2. BOUND - backend connected. Client messages are written to the backend
   unmodified plus a newline; backend lines are framed and sent to the client
   (JSON objects compacted, other text as is).
3. CLOSED - either side went away; the other side is closed too.

Binding happens once per pair. A later ``config`` is ignored.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect

from rendezvous.config import RelaySettings
from rendezvous.exceptions import BridgeConfigError, FrameTooLargeError, RelayError
from rendezvous.protocol.envelope import (
    Envelope,
    MessageType,
    create_error,
    create_status,
    decode,
)
from rendezvous.protocol.framing import StreamFramer
from rendezvous.routing import RelayDispatcher
from rendezvous.session import ConnectionRole, Outbox, new_conn_id
from rendezvous.transport.handler import receive_frame
from rendezvous.transport.queue import ConnectionQueue

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class BridgeState(str, Enum):
    """Bridge pair states."""
    UNBOUND = "unbound"  # Waiting for config
    BOUND = "bound"      # Backend stream open
    CLOSED = "closed"    # Torn down


def parse_backend_target(envelope: Envelope) -> tuple[str, int]:
    """
    Extract the backend address from a config envelope.

    Raises:
        BridgeConfigError: If host or port is missing or invalid
    """
    extra = envelope.model_extra or {}
    host = extra.get("backendHost")
    port = extra.get("backendPort")

    if not isinstance(host, str) or not host.strip():
        raise BridgeConfigError("backendHost required")

    if isinstance(port, bool):
        raise BridgeConfigError("backendPort must be an integer")
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise BridgeConfigError("backendPort must be an integer")
    if not 0 < port < 65536:
        raise BridgeConfigError("backendPort out of range")

    return host.strip(), port


class BridgeAdapter:
    """
    State machine for one client/backend pair.

    The adapter does not own the WebSocket. It sends through ``outbox`` and
    asks the transport to close the client through ``close_client``.
    """

    def __init__(
        self,
        conn_id: str,
        outbox: Outbox,
        close_client: Callable[[], Awaitable[None]],
        connect_timeout: float = 10.0,
        max_frame_bytes: int | None = None
    ):
        """
        Initialize the adapter.

        Args:
            conn_id: Handle of the client connection (for logging)
            outbox: Send capability towards the client
            close_client: Coroutine function closing the client connection
            connect_timeout: Seconds to wait for the backend
            max_frame_bytes: Max unterminated bytes kept from the backend
        """
        self.conn_id = conn_id
        self._outbox = outbox
        self._close_client = close_client
        self._connect_timeout = connect_timeout
        self._framer = StreamFramer(max_buffer_size=max_frame_bytes)

        self._state = BridgeState.UNBOUND
        self._backend: tuple[str, int] | None = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task | None = None

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def backend(self) -> tuple[str, int] | None:
        return self._backend

    # =========================================================================
    # Client -> backend
    # =========================================================================

    async def handle(self, raw: str | bytes) -> None:
        """Process one frame received from the client."""
        if self._state is BridgeState.CLOSED:
            return

        envelope = decode(raw)
        if isinstance(envelope, Envelope) and envelope.type == MessageType.CONFIG.value:
            if self._state is BridgeState.BOUND:
                logger.warning(f"Bridge {self.conn_id} already bound to {self._backend}, ignoring config")
                return
            await self._bind(envelope)
            return

        if self._state is BridgeState.UNBOUND:
            logger.warning(f"Bridge {self.conn_id} not configured, dropping message")
            return

        line = self._to_line(raw)
        if line is None:
            return

        try:
            self._writer.write(line)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            logger.error(f"Bridge {self.conn_id} backend write failed: {e}")
            self._notify(create_status("failed", "Backend connection lost"))
            await self._teardown(close_client=True)

    def _to_line(self, raw: str | bytes) -> bytes | None:
        """Terminate a client message for the backend stream."""
        text = raw if isinstance(raw, str) else raw.decode("utf-8", errors="replace")

        if "\n" in text:
            # The backend splits on newlines; only JSON can be re-encoded on one line
            try:
                text = json.dumps(json.loads(text), separators=(",", ":"), ensure_ascii=False)
            except (ValueError, RecursionError):
                logger.warning(f"Bridge {self.conn_id} dropping multi-line non-JSON message")
                return None

        return (text + "\n").encode("utf-8")

    async def _bind(self, envelope: Envelope) -> None:
        """UNBOUND -> BOUND: open the backend stream."""
        try:
            host, port = parse_backend_target(envelope)
        except BridgeConfigError as e:
            logger.warning(f"Bridge {self.conn_id} invalid config: {e}")
            self._notify(create_error("INVALID_CONFIG", str(e)))
            return

        logger.info(f"Bridge {self.conn_id} connecting to backend {host}:{port}")
        self._notify(create_status("connecting", f"Connecting to {host}:{port}"))

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self._connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.error(f"Bridge {self.conn_id} backend connection failed: {e!r}")
            self._notify(create_status("failed", "Backend connection failed"))
            await self._teardown(close_client=True)
            return

        if self._state is BridgeState.CLOSED:
            # Client went away while connecting
            self._writer.close()
            return

        self._backend = (host, port)
        self._state = BridgeState.BOUND
        self._reader_task = asyncio.create_task(
            self._read_backend(),
            name=f"bridge_reader_{self.conn_id}"
        )

        logger.info(f"Bridge {self.conn_id} bound to {host}:{port}")
        self._notify(create_status("connected", "Connected to backend"))

    # =========================================================================
    # Backend -> client
    # =========================================================================

    async def _read_backend(self) -> None:
        """Frame backend bytes into messages until EOF or failure."""
        try:
            while True:
                chunk = await self._reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    logger.info(f"Bridge {self.conn_id} backend closed the connection")
                    self._notify(create_status("closed", "Backend closed the connection"))
                    break

                for message in self._framer.feed(chunk):
                    self._forward(message)

        except FrameTooLargeError as e:
            logger.warning(f"Bridge {self.conn_id}: {e}")
            self._notify(create_status("failed", "Backend message too large"))
        except RelayError as e:
            logger.warning(f"Bridge {self.conn_id} client not keeping up: {e}")
        except (ConnectionError, OSError) as e:
            logger.error(f"Bridge {self.conn_id} backend read failed: {e}")
            self._notify(create_status("failed", "Backend connection lost"))

        await self._teardown(close_client=True)

    def _forward(self, message: str) -> None:
        """
        Send one framed backend message to the client.

        JSON objects are re-serialized compactly with their fields untouched;
        anything else goes out as the raw text.

        Raises:
            QueueFullError: If the client is not draining its queue
            QueueClosedError: If the client connection is closing
        """
        try:
            document = json.loads(message)
        except (ValueError, RecursionError) as e:
            logger.debug(f"Bridge {self.conn_id} forwarding raw backend text: {e}")
            document = None

        if isinstance(document, dict):
            self._outbox.put_nowait(json.dumps(document, separators=(",", ":"), ensure_ascii=False))
        else:
            self._outbox.put_nowait(message)

    def _notify(self, envelope: Envelope) -> None:
        """Best-effort status/error message to the client."""
        try:
            self._outbox.put_nowait(envelope.to_json())
        except RelayError as e:
            logger.debug(f"Bridge {self.conn_id} could not notify client: {e}")

    # =========================================================================
    # Teardown
    # =========================================================================

    async def close(self) -> None:
        """The client went away: tear down the backend side."""
        await self._teardown(close_client=False)

    async def _teardown(self, close_client: bool) -> None:
        if self._state is BridgeState.CLOSED:
            return
        self._state = BridgeState.CLOSED

        task, self._reader_task = self._reader_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Bridge {self.conn_id} backend close: {e}")
            self._writer = None

        self._framer.clear()
        logger.info(f"Bridge {self.conn_id} closed")

        if close_client:
            await self._close_client()


class BridgeHandler:
    """
    Handles WebSocket connections on the stream-bridging endpoint.

    Each connection gets its own outbound queue and BridgeAdapter. The
    client side is registered with the dispatcher's connection registry
    (role ``initiator``) so it shows up in connection counts.
    """

    def __init__(self, dispatcher: RelayDispatcher, settings: RelaySettings):
        self._dispatcher = dispatcher
        self._settings = settings

        # Active bridges: conn_id -> BridgeAdapter
        self._bridges: dict[str, BridgeAdapter] = {}

    @property
    def bridge_count(self) -> int:
        return len(self._bridges)

    async def handle_connection(self, websocket: WebSocket) -> None:
        """Handle a bridge client for its whole lifetime."""
        await websocket.accept()

        conn_id = new_conn_id()
        outbox = ConnectionQueue(
            conn_id,
            websocket.send_text,
            max_size=self._settings.max_queue_size
        )
        await outbox.start()

        async def close_client() -> None:
            # Let pending status messages out before closing
            await outbox.stop(drain=True)
            try:
                await websocket.close(code=1000)
            except (RuntimeError, WebSocketDisconnect) as e:
                logger.debug(f"Bridge client {conn_id} already closed: {e}")

        bridge = BridgeAdapter(
            conn_id,
            outbox,
            close_client,
            connect_timeout=self._settings.backend_connect_timeout,
            max_frame_bytes=self._settings.max_frame_bytes,
        )

        try:
            await self._dispatcher.connect(outbox, role=ConnectionRole.INITIATOR, conn_id=conn_id)
            self._bridges[conn_id] = bridge

            while True:
                data = await receive_frame(websocket)
                if data is None:
                    break
                await bridge.handle(data)

        except WebSocketDisconnect:
            logger.info(f"Bridge client disconnected: {conn_id}")

        except Exception as e:
            logger.error(f"Bridge connection error for {conn_id}: {e}")

        finally:
            self._bridges.pop(conn_id, None)
            await bridge.close()
            await self._dispatcher.disconnect(conn_id)
            await outbox.stop()
