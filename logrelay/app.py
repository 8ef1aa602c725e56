"""
Main application module for the logrelay ingestion server.

This module provides the application entry point and initialization logic:
logging setup, creation of the log directory, the FastAPI application and
the startup log entry.
"""

import logging
import os
import socket
from datetime import datetime, timezone
from typing import Optional, Tuple

from fastapi import FastAPI

from . import __version__
from .api import build_service, create_app
from .config import Config, load_config
from .errors import StorageError
from .logging_setup import configure_logging
from .models import LogEvent, create_event

logger = logging.getLogger(__name__)


def create_logrelay_app(config: Optional[Config] = None,
                        configure_logs: bool = True) -> Tuple[FastAPI, LogEvent]:
    """
    Create and initialize the logrelay application.

    Failing to create the log directory is fatal: the cause is logged and the
    process exits.

    Args:
        config: Configuration to use (loaded from the environment when omitted)
        configure_logs: Whether to install the process logging handlers

    Returns:
        tuple: (FastAPI app, startup log event)
    """
    config = config or load_config()

    service = build_service(config)
    try:
        service.store.ensure_root()
    except StorageError as e:
        logging.basicConfig(level=logging.INFO)
        logger.critical(f"Cannot start logrelay: {e}")
        raise SystemExit(1)

    if configure_logs:
        configure_logging(config)

    app = create_app(config, service=service)

    startup_event = create_event(
        'info',
        'logrelay service started',
        source='logrelay',
        metadata={
            'version': __version__,
            'hostname': socket.gethostname(),
            'pid': os.getpid(),
            'port': config.server.port,
            'startup_time': datetime.now(timezone.utc).isoformat(),
        },
    )
    try:
        service.store.append(startup_event)
    except StorageError as e:
        logger.critical(f"Cannot start logrelay: {e}")
        raise SystemExit(1)

    logger.info(f"[logrelay] service started, storing logs in {service.store.root}")

    return app, startup_event


def get_app() -> FastAPI:
    """Application factory for ``uvicorn --factory logrelay.app:get_app``."""
    app, _ = create_logrelay_app()
    return app
