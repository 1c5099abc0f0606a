"""
Service entrypoint.

Resolves the configuration profile, initialises logging and serves the
control API with uvicorn.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from .api.server import create_app
from .api.state import AppState
from .config import StudyCycleConfig
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


async def serve(
    config: StudyCycleConfig,
    host: str = "127.0.0.1",
    port: int = 8080,
    log_level: Optional[str] = None,
) -> None:
    """
    Run the control API inside an asyncio loop.

    Parameters
    ----------
    config:
        Service configuration resolved from a profile.
    host, port:
        Bind address for the uvicorn server.
    log_level:
        Level name for the service loggers; defaults to $STUDYCYCLE_LOG_LEVEL.
    """

    import uvicorn

    level = configure_logging(log_level)
    app = create_app(state=AppState(config=config))
    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_config=None,
        log_level=level,
        reload=False,
    )
    server = uvicorn.Server(config=server_config)
    LOG.info("Serving profile '%s' on %s:%s", config.profile, host, port)
    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Study cycle service")
    parser.add_argument("--profile", default="default", help="configuration profile to load")
    parser.add_argument("--host", default="127.0.0.1", help="bind host for the API server")
    parser.add_argument("--port", type=int, default=8080, help="bind port for the API server")
    parser.add_argument("--log-level", default=None, help="log level name, e.g. DEBUG or INFO")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    config = StudyCycleConfig.from_profile(args.profile)

    try:
        asyncio.run(serve(config=config, host=args.host, port=args.port, log_level=args.log_level))
    except KeyboardInterrupt:
        LOG.info("Service interrupted by user.")


if __name__ == "__main__":
    run()
