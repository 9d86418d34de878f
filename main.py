"""Command-line interface for the user service."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from user_service.config import Settings, load_settings
from user_service.database import ConnectionPool

logger = logging.getLogger("user_service.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User service utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: USER_SERVICE_CONFIG)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the users table")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default from settings)")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listening port (default from settings, 3000)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db"}

    # global options may precede the sub-command
    leading: list[str] = []
    while args_list[:1] == ["--config"] and len(args_list) >= 2:
        leading.extend(args_list[:2])
        args_list = args_list[2:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*leading, *args_list])
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args([*leading, *args_list])
            args_list = ["serve", *args_list]

    return parser.parse_args([*leading, *args_list])


def _load_settings(config: str | None) -> Settings:
    config_path = Path(config).expanduser().resolve(strict=False) if config else None
    return load_settings(config_path)


def _initialise_database(settings: Settings) -> None:
    pool = ConnectionPool(settings.database_path, size=1, timeout=settings.pool_timeout)
    try:
        pool.initialize()
    finally:
        pool.close()
    logger.info("Database initialised at %s", settings.database_path)


def _serve(settings: Settings, *, host: str | None, port: int | None) -> None:
    from user_service.api import create_app
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port
    logger.info("Starting user service on http://%s:%s", bind_host, bind_port)

    app = create_app(settings=settings)
    uvicorn.run(
        app,
        host=bind_host,
        port=bind_port,
        log_level=settings.log_level.lower(),
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    settings = _load_settings(args.config)

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    if args.command == "serve":
        _serve(settings, host=args.host, port=args.port)
    elif args.command == "init-db":
        _initialise_database(settings)
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
