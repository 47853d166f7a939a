"""
Command line entrypoint.

Exposes the FastAPI app as main:app for uvicorn, and `python main.py --root DIR`
for sharing a directory directly.
"""

from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from server import app, create_app
from tarshare_backend.config import ShareSettings

__all__ = ["app", "main", "parse_args"]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tarshare",
        description="Share a directory over HTTP; download selections as tar archives.",
    )
    parser.add_argument("-r", "--root", help="directory to share (default: TARSHARE_ROOT or .)")
    parser.add_argument("--host", help="bind address (default: 127.0.0.1)")
    parser.add_argument("-p", "--port", type=int, help="bind port (default: 3010)")
    parser.add_argument("-w", "--workers", type=int, help="concurrent archive builds")
    parser.add_argument("--buffer", type=int, help="chunks buffered per archive download")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> ShareSettings:
    return ShareSettings.from_env().with_overrides(
        root=args.root,
        host=args.host,
        port=args.port,
        archive_workers=args.workers,
        bridge_capacity=args.buffer,
        log_level=args.log_level,
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    import uvicorn

    settings = settings_from_args(parse_args(argv))
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
