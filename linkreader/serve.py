from __future__ import annotations

import argparse
import logging
import os

import uvicorn

from linkreader.app import create_app
from linkreader.config import load_service_config

logger = logging.getLogger(__name__)

DEFAULT_PORT = 80


def resolve_port(cli_port: int | None, environ: dict[str, str] | None = None) -> int:
    if cli_port is not None:
        return cli_port

    raw_port = (environ if environ is not None else os.environ).get("PORT", "").strip()
    if raw_port:
        if raw_port.isdigit() and 0 < int(raw_port) < 65536:
            return int(raw_port)
        logger.warning("Ignoring invalid PORT value %r, using %d", raw_port, DEFAULT_PORT)
    return DEFAULT_PORT


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the link reader over HTTP (JSON-RPC + event stream).")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: $PORT or 80).")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind.")
    parser.add_argument("--config", default=None, help="Path to a JSON config file.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    args = parse_args(argv)
    config = load_service_config(args.config)
    port = resolve_port(args.port)
    logger.info("Starting link reader on %s:%d", args.host, port)
    uvicorn.run(create_app(config), host=args.host, port=port, log_level=logging.getLevelName(level).lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
