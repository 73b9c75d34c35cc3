#!/usr/bin/env python3
"""Main entry point for the dvs object server.

Serves a content-addressed storage directory over HTTP so repositories can
``push`` and ``pull`` objects. Bootstraps uvicorn with ``dvs.api.server:app``;
the storage root is handed over through ``DVS_SERVER_STORAGE``.
"""

import os
import sys
from argparse import ArgumentParser
from pathlib import Path

if __name__ == "__main__":
    # Parse arguments first so --help works without touching logging
    parser = ArgumentParser(description="Start the dvs object server")
    parser.add_argument(
        "--storage",
        default=os.getenv("DVS_SERVER_STORAGE"),
        help="Directory holding objects (default: DVS_SERVER_STORAGE env var)",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8765, help="Bind port")
    parser.add_argument(
        "--max-upload",
        type=int,
        default=None,
        help="Reject uploads larger than this many bytes",
    )
    parser.add_argument(
        "--log-format",
        choices=["pretty", "json"],
        help="Log format (pretty or json). Overrides LOG_FORMAT env var.",
    )
    parser.add_argument(
        "--log-colors",
        type=lambda x: x.lower() in ("true", "1", "yes", "on"),
        help="Enable colored logs (true/false). Overrides LOG_COLORS env var.",
    )
    args = parser.parse_args()

    # Logging env vars must be set before the logger module is imported
    if args.log_format:
        os.environ["LOG_FORMAT"] = args.log_format
    if args.log_colors is not None:
        os.environ["LOG_COLORS"] = "true" if args.log_colors else "false"

    from dvs.utils.logger import get_logger

    startup_logger = get_logger("server.startup")

    if not args.storage:
        startup_logger.error("No storage directory given; pass --storage")
        sys.exit(1)
    storage = Path(args.storage).expanduser().resolve()
    if storage.exists() and not storage.is_dir():
        startup_logger.error("--storage is not a directory", path=str(storage))
        sys.exit(1)

    os.environ["DVS_SERVER_STORAGE"] = str(storage)
    if args.max_upload is not None:
        os.environ["DVS_SERVER_MAX_UPLOAD"] = str(args.max_upload)

    import uvicorn

    from dvs import __version__
    from dvs.config.logging_config import get_logging_config

    startup_logger.info(
        "Starting dvs object server",
        version=__version__,
        server_url=f"http://{args.host}:{args.port}",
        storage=str(storage),
        max_upload=args.max_upload,
    )

    uvicorn.run(
        "dvs.api.server:app",
        host=args.host,
        port=args.port,
        log_config=get_logging_config(),
        timeout_graceful_shutdown=5,
    )
