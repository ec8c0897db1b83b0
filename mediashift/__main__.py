"""
Command-line entry point: python -m mediashift
"""

import argparse
import logging
import sys

import uvicorn

from . import __version__
from .config import load_config, set_config
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mediashift",
        description="MediaShift media conversion service",
    )
    parser.add_argument("--config", "-c", help="Path to a mediashift.yaml config file")
    parser.add_argument("--host", help="Bind address (overrides config)")
    parser.add_argument("--port", "-p", type=int, help="Bind port (overrides config)")
    parser.add_argument("--log-level", help="Log level (overrides config)")
    parser.add_argument("--version", action="version", version=f"MediaShift {__version__}")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.log_level:
        config.logging.level = args.log_level
    set_config(config)

    configure_logging(config.logging)
    logger.info(f"Starting MediaShift v{__version__}")

    # Imported after set_config so the app picks up CLI overrides
    from .api import app

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
