"""
backend/main.py

Command-line entry point: wires source → cache → repository → API and
serves it with uvicorn.

Usage:
    hyperrail-server --port 8080 --source-url https://graph.irail.be/sncb/connections
    python -m hyperrail.backend.main --log-level DEBUG
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import NoReturn

import uvicorn

from .api.main import create_app, set_repository
from .config import settings
from .connections import LinkedConnectionsRepository
from .source import HttpRawSource
from .storage import MemoryCache

logger = logging.getLogger("hyperrail.main")


def build_repository(source_url: str) -> LinkedConnectionsRepository:
    source = HttpRawSource(
        base_url=source_url,
        timeout=settings.SOURCE_TIMEOUT_SECONDS,
        default_ttl=settings.SOURCE_DEFAULT_TTL_SECONDS,
    )
    return LinkedConnectionsRepository(
        source=source,
        cache=MemoryCache(),
        combined_ttl=settings.COMBINED_CACHE_TTL_SECONDS,
        max_limit_pages=settings.MAX_LIMIT_PAGES,
    )


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Hyperrail linked connections server")
    parser.add_argument("--host",       default=settings.API_HOST)
    parser.add_argument("--port",       default=settings.API_PORT, type=int)
    parser.add_argument("--source-url", default=settings.SOURCE_URL)
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args()


def main() -> NoReturn:
    args = _parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if not args.source_url.startswith(("http://", "https://")):
        print(f"ERROR: invalid --source-url: {args.source_url!r}", file=sys.stderr)
        sys.exit(1)

    set_repository(build_repository(args.source_url))
    logger.info(
        "Hyperrail — API=http://%s:%d  source=%s",
        args.host, args.port, args.source_url,
    )
    uvicorn.run(create_app(), host=args.host, port=args.port, log_level="warning")
    logger.info("Hyperrail stopped cleanly")
    sys.exit(0)


if __name__ == "__main__":
    main()
