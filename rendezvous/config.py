"""
Relay Configuration

Settings are read from environment variables (a .env file in the working
directory is loaded first).

Environment variables:
    RELAY_HOST: Interface to bind (default "0.0.0.0")
    RELAY_PORT / PORT: Port to bind (default 8080)
    RELAY_SECRET / SIGNALING_SECRET: Shared secret required on join (unset = no check)
    RELAY_ALLOWED_ORIGINS: Comma-separated CORS origins
    RELAY_ALLOWED_ORIGIN_REGEX: Regex for additional CORS origins
    RELAY_MAX_QUEUE_SIZE: Outbound queue depth per connection (default 200)
    RELAY_MAX_FRAME_BYTES: Max unterminated bytes from a bridge backend
        (default 1048576, 0 disables the limit)
    RELAY_BACKEND_CONNECT_TIMEOUT: Seconds to wait for a bridge backend (default 10)
    RELAY_STATIC_DIR: Directory served under /static (optional)
    RELAY_LOG_LEVEL: Logging level (default "INFO")
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


@dataclass
class RelaySettings:
    """
    Configuration for the relay process.

    Attributes:
        host: Interface to bind
        port: Port to bind
        secret: Shared secret for join; None disables authentication
        allowed_origins: CORS origins allowed to call the HTTP endpoints
        allowed_origin_regex: Regex matched against other origins
        max_queue_size: Outbound queue depth per connection
        max_frame_bytes: Unterminated backend bytes kept before the bridge
            is torn down; None disables the limit
        backend_connect_timeout: Seconds to wait when opening a bridge backend
        static_dir: Directory served under /static
        log_level: Root logging level
    """
    host: str = "0.0.0.0"
    port: int = 8080
    secret: str | None = None
    allowed_origins: list[str] = field(default_factory=list)
    allowed_origin_regex: str | None = None
    max_queue_size: int = 200
    max_frame_bytes: int | None = 1024 * 1024
    backend_connect_timeout: float = 10.0
    static_dir: str | None = None
    log_level: str = "INFO"


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def settings_from_env() -> RelaySettings:
    """Create RelaySettings from environment variables."""
    load_dotenv()

    max_frame_bytes = int(os.getenv("RELAY_MAX_FRAME_BYTES", str(1024 * 1024)))

    return RelaySettings(
        host=os.getenv("RELAY_HOST", "0.0.0.0"),
        port=int(os.getenv("RELAY_PORT") or os.getenv("PORT") or "8080"),
        secret=os.getenv("RELAY_SECRET") or os.getenv("SIGNALING_SECRET") or None,
        allowed_origins=_split_list(os.getenv("RELAY_ALLOWED_ORIGINS")),
        allowed_origin_regex=os.getenv("RELAY_ALLOWED_ORIGIN_REGEX") or None,
        max_queue_size=int(os.getenv("RELAY_MAX_QUEUE_SIZE", "200")),
        max_frame_bytes=max_frame_bytes if max_frame_bytes > 0 else None,
        backend_connect_timeout=float(os.getenv("RELAY_BACKEND_CONNECT_TIMEOUT", "10")),
        static_dir=os.getenv("RELAY_STATIC_DIR") or None,
        log_level=os.getenv("RELAY_LOG_LEVEL", "INFO").upper(),
    )
