"""
Run the relay with uvicorn.

Usage:
    python -m rendezvous
"""

import logging

import uvicorn

from rendezvous.config import settings_from_env

logger = logging.getLogger(__name__)


def main() -> None:
    settings = settings_from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logger.info(f"Using HOST={settings.host}, PORT={settings.port}")
    uvicorn.run(
        "rendezvous.transport.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
