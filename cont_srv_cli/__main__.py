"""Command-line entry point: serve a directory, or hash a password for the config file."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

import uvicorn

from cont_srv.app import ServerSettings, create_app
from cont_srv.app.config import ConfigError
from cont_srv.app.services import hash_password

logger = logging.getLogger("cont_srv_cli")


def _port(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {raw!r}") from None
    if not 1 <= value <= 65535:
        raise argparse.ArgumentTypeError(f"port must be in 1..65535, got {value}")
    return value


def parse_cli_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cont-srv", description="Serve a directory tree with an in-browser EPUB reader")
    parser.add_argument(
        "-a",
        "--address",
        default="0.0.0.0",
        help="The address the server binds to. Specify '::' to bind to all addresses",
    )
    parser.add_argument("-p", "--port", type=_port, default=1131, help="The server listening port")
    parser.add_argument("-r", "--root-dir", dest="root_dir", default=".", help="The contents root directory")
    parser.add_argument("-c", "--config-file", dest="config_file", help="The path of the YAML config file")
    parser.add_argument(
        "--hash-password",
        dest="hash_password",
        help="Hash the password and exit after printing the result. The hash can be used in the config file.",
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> ServerSettings:
    """CLI values first, then whatever the config file sets."""
    settings = ServerSettings(
        root_dir=Path(args.root_dir),
        address=args.address,
        port=args.port,
    )
    if args.config_file:
        settings = ServerSettings.from_file(Path(args.config_file), base=settings)
    return settings


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_cli_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.hash_password is not None:
        print(hash_password(args.hash_password))
        return 0

    try:
        settings = build_settings(args)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    app = create_app(settings)
    logger.info(
        "Serving %s on %s:%d (%s)",
        settings.root_dir,
        settings.address,
        settings.port,
        "https" if settings.tls_enabled else "http",
    )
    uvicorn.run(
        app,
        host=settings.address,
        port=settings.port,
        ssl_certfile=str(settings.cert_path) if settings.tls_enabled else None,
        ssl_keyfile=str(settings.key_path) if settings.tls_enabled else None,
        log_level="info",
    )
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
