"""
Rendezvous Relay Application

FastAPI application exposing the relay over WebSocket.

Endpoints:
- WS /ws: signaling relay (join / leave / offer / answer / candidate)
- WS /bridge: WebSocket <-> TCP stream bridge
- GET /: static index.html when present, else plain liveness text
- GET /health: connection and session counts
- /static: optional static files (RELAY_STATIC_DIR)

Configuration comes from environment variables, see rendezvous.config.
Run with:
    uvicorn rendezvous.transport.app:app
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from rendezvous import __version__
from rendezvous.config import RelaySettings, settings_from_env
from rendezvous.routing import RelayDispatcher
from rendezvous.transport.bridge import BridgeHandler
from rendezvous.transport.handler import WebSocketHandler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_app(settings: RelaySettings | None = None) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings: Relay configuration; read from the environment when omitted
    """
    settings = settings or settings_from_env()
    logging.getLogger().setLevel(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Creates the shared dispatcher and the per-endpoint handlers."""
        logger.info("Starting rendezvous relay...")

        dispatcher = RelayDispatcher(secret=settings.secret)
        app.state.dispatcher = dispatcher
        app.state.handler = WebSocketHandler(dispatcher, max_queue_size=settings.max_queue_size)
        app.state.bridge_handler = BridgeHandler(dispatcher, settings)

        if settings.secret:
            logger.info("Shared secret required on join")
        logger.info("Rendezvous relay started")

        yield

        logger.info(
            f"Rendezvous relay stopped "
            f"({dispatcher.connection_count} connection(s) still open)"
        )

    app = FastAPI(
        title="Rendezvous Relay",
        description="Signaling relay and WebSocket-to-TCP bridge for peer session negotiation",
        version=__version__,
        lifespan=lifespan
    )
    app.state.settings = settings

    if settings.allowed_origins or settings.allowed_origin_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_origin_regex=settings.allowed_origin_regex,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type"],
        )

    if settings.static_dir:
        app.mount("/static", StaticFiles(directory=settings.static_dir), name="static")

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Signaling endpoint. Peers join a session and exchange offers."""
        handler = getattr(app.state, "handler", None)
        if handler is None:
            await websocket.close(code=1011, reason="Relay not initialized")
            return

        await handler.handle_connection(websocket)

    @app.websocket("/bridge")
    async def bridge_endpoint(websocket: WebSocket):
        """
        Stream bridge endpoint.

        The first message must be a config envelope naming the backend.
        """
        bridge_handler = getattr(app.state, "bridge_handler", None)
        if bridge_handler is None:
            await websocket.close(code=1011, reason="Relay not initialized")
            return

        await bridge_handler.handle_connection(websocket)

    index_file = Path(settings.static_dir) / "index.html" if settings.static_dir else None

    @app.get("/")
    async def index():
        """Client page when the static directory ships one, else liveness text."""
        if index_file is not None and index_file.is_file():
            return FileResponse(index_file)
        return PlainTextResponse("Rendezvous relay is running")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        dispatcher = getattr(app.state, "dispatcher", None)
        bridge_handler = getattr(app.state, "bridge_handler", None)
        return {
            "status": "healthy",
            "connections": dispatcher.connection_count if dispatcher else 0,
            "sessions": dispatcher.session_count if dispatcher else 0,
            "bridges": bridge_handler.bridge_count if bridge_handler else 0,
        }

    return app


app = create_app()
