"""
Delivery channels used by the transport client.

Two channels implement the same contract:

* ``HttpTransport`` POSTs each event to ``/api/logs`` with ``requests``.
* ``WebSocketTransport`` pushes ``new-log`` frames over a persistent
  WebSocket using the ``websockets`` sync client.

``deliver`` returns on confirmed delivery (a 2xx response or a positive
``log-ack`` frame) and raises ``TransportError`` on any network failure,
timeout or server-side storage failure; a 400 from the server becomes a
``ValidationError`` so the caller can drop the event instead of retrying it.
"""

import json
import logging
import time
from contextlib import ExitStack
from typing import Any, Dict, Optional

import requests
from websockets.exceptions import WebSocketException
from websockets.sync.client import ClientConnection, connect

from .config import ClientConfig
from .errors import TransportError, ValidationError
from .models import LogEvent

logger = logging.getLogger(__name__)


class Transport:
    """Base class for delivery channels."""

    name = "transport"

    def deliver(self, event: LogEvent) -> None:
        raise NotImplementedError

    def probe(self) -> None:
        """
        Check that the ingestion server is reachable.

        Raises:
            TransportError: If it is not
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


class HttpTransport(Transport):
    """Delivers events with one HTTP POST each."""

    name = "http"

    def __init__(self, config: ClientConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session if session is not None else requests.Session()

    def deliver(self, event: LogEvent) -> None:
        try:
            response = self.session.post(
                self.config.ingest_url,
                json=event.to_record(),
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"POST {self.config.ingest_url} failed: {e}") from e

        if response.status_code == 400:
            raise ValidationError(self._error_text(response))
        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"POST {self.config.ingest_url} returned {response.status_code}",
                status_code=response.status_code,
            )

    def probe(self) -> None:
        try:
            response = self.session.get(self.config.health_url, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise TransportError(f"GET {self.config.health_url} failed: {e}") from e
        if response.status_code != 200:
            raise TransportError(
                f"GET {self.config.health_url} returned {response.status_code}",
                status_code=response.status_code,
            )

    @staticmethod
    def _error_text(response: requests.Response) -> str:
        try:
            return str(response.json().get("error") or "rejected by server")
        except (ValueError, AttributeError):
            return response.text or "rejected by server"

    def close(self) -> None:
        self.session.close()


class WebSocketTransport(Transport):
    """
    Pushes events as ``new-log`` frames over a persistent WebSocket.

    The server answers every ``new-log`` with a ``log-ack`` frame carrying
    ``{ok, status, error?}``; delivery is confirmed only by a positive ack.
    Broadcast frames that arrive in between are skipped.
    """

    name = "websocket"

    def __init__(self, config: ClientConfig):
        self.config = config
        self._ws: Optional[ClientConnection] = None
        self._stack: Optional[ExitStack] = None

    def _connection(self) -> ClientConnection:
        if self._ws is None:
            stack = ExitStack()
            try:
                self._ws = stack.enter_context(connect(
                    self.config.websocket_url,
                    open_timeout=self.config.timeout,
                    close_timeout=self.config.timeout,
                ))
            except (OSError, TimeoutError, WebSocketException) as e:
                raise TransportError(f"Cannot connect to {self.config.websocket_url}: {e}") from e
            self._stack = stack
        return self._ws

    def deliver(self, event: LogEvent) -> None:
        ws = self._connection()
        try:
            ws.send(json.dumps({'event': 'new-log', 'data': event.to_record()}, ensure_ascii=False))
            ack = self._wait_for_ack(ws)
        except TimeoutError as e:
            # A late ack would be matched to the next event, so start over
            self.close()
            raise TransportError(f"No acknowledgement within {self.config.timeout}s") from e
        except (OSError, WebSocketException) as e:
            self.close()
            raise TransportError(f"WebSocket delivery failed: {e}") from e

        if ack.get('ok') is True:
            return
        error = str(ack.get('error') or "rejected by server")
        status = ack.get('status')
        if status == 400:
            raise ValidationError(error)
        raise TransportError(f"Server could not store event: {error}",
                             status_code=status if isinstance(status, int) else None)

    def _wait_for_ack(self, ws: ClientConnection) -> Dict[str, Any]:
        """
        Read frames until the ``log-ack`` for the event just sent arrives.

        Raises:
            TimeoutError: If no ack arrives within the configured timeout
        """
        deadline = time.monotonic() + self.config.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("log-ack timed out")
            text = ws.recv(timeout=remaining)
            try:
                frame = json.loads(text)
            except ValueError:
                continue
            if not isinstance(frame, dict):
                continue
            if frame.get('event') == 'log-ack':
                data = frame.get('data')
                return data if isinstance(data, dict) else {}
            if frame.get('event') == 'error':
                logger.warning(f"Logging server reported an error: {frame.get('data')}")

    def probe(self) -> None:
        self._connection()

    def close(self) -> None:
        stack, self._stack, self._ws = self._stack, None, None
        if stack is not None:
            try:
                stack.close()
            except (OSError, WebSocketException):
                pass


def build_transport(config: ClientConfig) -> Transport:
    """Create the transport named by ``config.channel``."""
    if config.channel == "websocket":
        return WebSocketTransport(config)
    if config.channel != "http":
        logger.warning(f"Unknown channel {config.channel!r}, falling back to http")
    return HttpTransport(config)
