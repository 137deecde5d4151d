# Transport Layer
# WebSocket endpoints, per-connection outbound queues and the TCP stream bridge

from rendezvous.transport.queue import ConnectionQueue
from rendezvous.transport.handler import WebSocketHandler, receive_frame
from rendezvous.transport.bridge import BridgeAdapter, BridgeHandler, BridgeState
from rendezvous.transport.app import app, create_app

__all__ = [
    "ConnectionQueue",
    "WebSocketHandler",
    "receive_frame",
    "BridgeAdapter",
    "BridgeHandler",
    "BridgeState",
    "app",
    "create_app",
]
