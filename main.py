"""
Voice gateway entry point.

Builds the shared services, then serves the FastAPI app with uvicorn.
Missing credentials or a failed client initialization abort the process
before the listener opens.

Usage:
    python main.py
"""

import logging
import sys

import uvicorn

from voice_gateway.config import StartupError, settings
from voice_gateway.server.app import close_all_connections, create_app
from voice_gateway.server.bootstrap import build_services

logger = logging.getLogger(__name__)


class GatewayServer(uvicorn.Server):
    """Closes client sockets with a restart code before the listener shuts down."""

    def __init__(self, config: uvicorn.Config, app) -> None:
        super().__init__(config)
        self._app = app

    async def shutdown(self, sockets=None) -> None:
        await close_all_connections(self._app)
        await super().shutdown(sockets=sockets)


def main() -> None:
    try:
        services = build_services(settings)
    except StartupError as exc:
        logger.critical("Fatal startup error: %s", exc)
        sys.exit(1)

    app = create_app(services=services)
    config = uvicorn.Config(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.log_level.lower(),
    )
    GatewayServer(config, app).run()


if __name__ == "__main__":
    main()
