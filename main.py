#!/usr/bin/env python3
"""
logrelay - Log ingestion and real-time fan-out server

Accepts log events over HTTP and WebSocket, stores them in rotating daily
files per source, and streams them live to connected dashboards.
"""

import argparse

import uvicorn

from logrelay.app import create_logrelay_app
from logrelay.config import load_config


def create_parser() -> argparse.ArgumentParser:
    """Create the command line argument parser."""
    parser = argparse.ArgumentParser(description="logrelay ingestion server")
    parser.add_argument("--config", "-c", help="Path to a YAML config file")
    parser.add_argument("--host", help="Bind address (overrides LOGRELAY_HOST)")
    parser.add_argument("--port", "-p", type=int, help="Bind port (overrides LOGRELAY_PORT)")
    parser.add_argument("--log-dir", help="Log root directory (overrides LOGRELAY_LOG_DIR)")
    return parser


def main() -> None:
    """Main entry point for the logrelay server."""
    args = create_parser().parse_args()

    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.log_dir:
        config.storage.log_dir = args.log_dir

    app, _ = create_logrelay_app(config)

    # Binding failures propagate and terminate the process
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
        access_log=config.server.access_log,
    )


if __name__ == "__main__":
    main()
