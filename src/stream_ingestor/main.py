"""Main entry point for the stream ingestor."""

import argparse
import asyncio
import logging
import os
import sys
from enum import IntEnum
from typing import List, Optional

from .config.settings import load_settings
from .errors import ConnectError, StartupError, StoreError
from .service import IngestorService
from .utils.logging import setup_logging


logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    OK = 0
    RUNTIME_FAILURE = 1
    USAGE = 2
    STARTUP_FAILURE = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stream-ingestor",
        description="Stream push events into PostgreSQL."
    )
    parser.add_argument("--host", help="streaming api host. REQUIRED")
    parser.add_argument("--key", help="client key. REQUIRED")
    parser.add_argument("--dsn", help="PostgreSQL connection string. REQUIRED")
    parser.add_argument("--config", default=os.getenv("CONFIG_FILE"),
                        help="YAML configuration file")
    parser.add_argument("--log-level", help="override the configured log level")
    return parser


def run(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides = {
        "stream": {"host": args.host, "key": args.key},
        "sink": {"dsn": args.dsn},
        "logging": {"level": args.log_level},
    }

    try:
        settings = load_settings(args.config, overrides)
    except (FileNotFoundError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return ExitCode.USAGE

    missing = settings.missing_required()
    if missing:
        for name in missing:
            print(f"--{name} is required", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return ExitCode.USAGE

    setup_logging(settings.logging, settings.service_name)
    logger.info(f"Starting {settings.service_name}")

    service = IngestorService(settings)
    try:
        result = asyncio.run(service.run())
    except (ConnectError, StartupError) as e:
        logger.error(f"Startup failed: {e}")
        return ExitCode.STARTUP_FAILURE
    except StoreError as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return ExitCode.RUNTIME_FAILURE

    logger.info(f"Service shutdown complete ({result.shutdown_outcome.value})")
    return ExitCode.OK


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
