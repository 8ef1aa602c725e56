"""
Bridge from the standard ``logging`` module to a TransportClient.

Attach a RelayHandler to any logger to ship its records to the ingestion
server through the client's buffer.
"""

import logging

from .client import TransportClient
from .logging_setup import level_name

# Records from the pipeline itself are never shipped, to avoid feedback loops
_INTERNAL_PREFIX = "logrelay"


class RelayHandler(logging.Handler):
    """Logging handler that forwards records to a TransportClient."""

    def __init__(self, client: TransportClient, level: int = logging.NOTSET):
        super().__init__(level)
        self.client = client

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == _INTERNAL_PREFIX or record.name.startswith(_INTERNAL_PREFIX + "."):
            return
        try:
            metadata = {
                'logger': record.name,
                'module': record.module,
                'function': record.funcName,
                'line': record.lineno,
            }
            if record.exc_info:
                metadata['stack'] = logging.Formatter().formatException(record.exc_info)
            extra = getattr(record, 'metadata', None)
            if isinstance(extra, dict):
                metadata.update(extra)
            self.client.log(level_name(record.levelno), record.getMessage(), metadata)
        except Exception:
            self.handleError(record)
