"""
Exception taxonomy for the logrelay pipeline.

Every failure the pipeline can produce maps onto one of these classes so that
the HTTP layer, the WebSocket channel and the producer-side client can decide
how to react (reject, retry, skip) without inspecting raw exceptions.
"""

from typing import Optional


class LogRelayError(Exception):
    """Base class for all logrelay errors."""


class ValidationError(LogRelayError):
    """A log event is malformed (missing level, empty message, bad filter)."""


class TransportError(LogRelayError):
    """Delivery to the ingestion server failed and should be retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(LogRelayError):
    """The file store could not read or write log data."""


class ParseError(LogRelayError):
    """A stored line could not be decoded into a log event."""

    def __init__(self, message: str, path: Optional[str] = None, line_number: Optional[int] = None):
        super().__init__(message)
        self.path = path
        self.line_number = line_number
