"""
Producer-side transport client.

Producers call ``send`` or one of the level helpers; the event is placed in
the local buffer and the call returns immediately. A background delivery
thread pushes buffered events to the ingestion server, acknowledging only
confirmed deliveries, and reconnects with exponential backoff while the
server is unreachable. Nothing in the producer-facing API raises.
"""

import json
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .buffer import BufferedEntry, LocalBuffer
from .config import ClientConfig
from .errors import TransportError, ValidationError
from .models import LogEvent, LogLevel, create_event
from .transport import Transport, build_transport

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _jsonable(metadata: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Coerce arbitrary producer metadata into plain JSON values."""
    if not metadata:
        return {}
    if not isinstance(metadata, Mapping):
        metadata = {'value': metadata}
    try:
        return json.loads(json.dumps(dict(metadata), default=str))
    except (TypeError, ValueError):
        return {'repr': repr(metadata)}


class TransportClient:
    """Buffers log events locally and delivers them in the background."""

    def __init__(self, config: ClientConfig, transport: Optional[Transport] = None,
                 buffer: Optional[LocalBuffer] = None,
                 on_state_change: Optional[Callable[[ConnectionState], None]] = None):
        self.config = config
        self.source = config.source
        self.transport = transport if transport is not None else build_transport(config)
        self.buffer = buffer if buffer is not None else LocalBuffer(
            max_size=config.buffer_size,
            max_age=config.buffer_max_age,
            spool_path=config.spool_path,
        )
        self.on_state_change = on_state_change
        try:
            self.min_level = LogLevel.parse(config.min_level)
        except ValueError:
            logger.warning(f"Unknown min_level {config.min_level!r}, using debug")
            self.min_level = LogLevel.DEBUG

        self.delivered = 0
        self.rejected = 0
        self._state = ConnectionState.DISCONNECTED
        self._failures = 0
        self._next_attempt = 0.0
        self._delivery_lock = threading.Lock()
        self._wakeup = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.info(f"Logging server connection: {previous.value} -> {state.value}")
        if self.on_state_change is not None:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.warning(f"State change listener failed: {e}")

    # Producer API

    def send(self, event: LogEvent) -> Optional[BufferedEntry]:
        """
        Hand an event to the buffer and wake the delivery loop.

        Never blocks on network I/O and never raises.

        Returns:
            Optional[BufferedEntry]: The buffered entry, or None if buffering failed
        """
        try:
            entry = self.buffer.enqueue(event)
        except Exception as e:
            logger.error(f"Failed to buffer log event: {e}")
            return None
        self._wakeup.set()
        return entry

    def log(self, level: Union[str, LogLevel], message: str,
            metadata: Optional[Mapping[str, Any]] = None) -> Optional[LogEvent]:
        """
        Create an event stamped with this client's source and send it.

        Events below ``min_level`` and invalid events are dropped with a local
        warning instead of raising.

        Returns:
            Optional[LogEvent]: The event that was sent, if any
        """
        try:
            level = LogLevel.parse(level)
            if level < self.min_level:
                return None
            event = create_event(level, message, source=self.source, metadata=_jsonable(metadata))
        except (ValidationError, ValueError) as e:
            logger.warning(f"Dropping invalid log event: {e}")
            return None
        self.send(event)
        return event

    def debug(self, message: str, metadata: Optional[Mapping[str, Any]] = None) -> Optional[LogEvent]:
        return self.log(LogLevel.DEBUG, message, metadata)

    def info(self, message: str, metadata: Optional[Mapping[str, Any]] = None) -> Optional[LogEvent]:
        return self.log(LogLevel.INFO, message, metadata)

    def warn(self, message: str, metadata: Optional[Mapping[str, Any]] = None) -> Optional[LogEvent]:
        return self.log(LogLevel.WARN, message, metadata)

    warning = warn

    def error(self, message: str, metadata: Optional[Mapping[str, Any]] = None) -> Optional[LogEvent]:
        return self.log(LogLevel.ERROR, message, metadata)

    def activity(self, user_id: Any, action: str, **metadata) -> Optional[LogEvent]:
        """Log a user action."""
        return self.info(f"User activity: {action}", {'userId': user_id, 'action': action, **metadata})

    def performance(self, operation: str, duration_ms: float, **metadata) -> Optional[LogEvent]:
        """Log how long an operation took."""
        return self.info(
            f"Performance: {operation}",
            {'operation': operation, 'durationMs': duration_ms, **metadata},
        )

    def db_transaction(self, operation: str, model: str, **metadata) -> Optional[LogEvent]:
        return self.debug(
            f"Database transaction: {operation} on {model}",
            {'operation': operation, 'model': model, **metadata},
        )

    # Delivery

    def _backoff_delay(self) -> float:
        if self._failures <= 0:
            return 0.0
        return min(self.config.backoff_base * (2 ** (self._failures - 1)), self.config.backoff_max)

    def _schedule_retry(self, error: TransportError) -> None:
        self._failures += 1
        delay = self._backoff_delay()
        self._next_attempt = time.monotonic() + delay
        self._set_state(ConnectionState.DISCONNECTED)
        logger.warning(f"Log delivery unavailable ({error}); {len(self.buffer)} buffered, retrying in {delay:.1f}s")

    def _connect(self) -> bool:
        self._set_state(ConnectionState.CONNECTING)
        try:
            self.transport.probe()
        except TransportError as e:
            self._schedule_retry(e)
            return False
        except Exception as e:
            self._schedule_retry(TransportError(str(e)))
            return False
        self._failures = 0
        self._set_state(ConnectionState.CONNECTED)
        return True

    def run_once(self) -> int:
        """
        Run one delivery cycle.

        While disconnected, a reconnect is attempted once the backoff delay has
        passed. While connected, every buffered entry is delivered in order,
        stopping at the first transport failure.

        Returns:
            int: Number of entries delivered in this cycle
        """
        with self._delivery_lock:
            delivered = 0
            if self._state != ConnectionState.CONNECTED:
                if time.monotonic() >= self._next_attempt and self._connect():
                    delivered = self._deliver_pending()
            else:
                delivered = self._deliver_pending()

            if self.buffer.dirty:
                self.buffer.persist_to_disk()
            return delivered

    def _deliver_pending(self) -> int:
        delivered = 0
        for entry in self.buffer.drain():
            self.buffer.mark_in_flight([entry.id])
            try:
                self.transport.deliver(entry.event)
            except ValidationError as e:
                logger.warning(f"Logging server rejected event, dropping it: {e}")
                self.buffer.acknowledge([entry.id])
                self.rejected += 1
                continue
            except TransportError as e:
                self.buffer.mark_failed([entry.id])
                self._schedule_retry(e)
                break
            except Exception as e:
                self.buffer.mark_failed([entry.id])
                self._schedule_retry(TransportError(f"unexpected delivery error: {e}"))
                break
            self.buffer.acknowledge([entry.id])
            delivered += 1

        self.delivered += delivered
        return delivered

    def flush(self, timeout: float = 5.0) -> bool:
        """
        Deliver buffered events synchronously until empty or ``timeout`` passes.

        Returns:
            bool: True if the buffer is empty afterwards
        """
        deadline = time.monotonic() + timeout
        while len(self.buffer) and time.monotonic() < deadline:
            if self._state != ConnectionState.CONNECTED:
                wait = self._next_attempt - time.monotonic()
                if self._next_attempt > deadline:
                    break
                if wait > 0:
                    time.sleep(min(wait, 0.05))
                    continue
            self.run_once()
        return len(self.buffer) == 0

    def _wait_time(self) -> float:
        if self._state == ConnectionState.CONNECTED:
            return self.config.flush_interval
        remaining = self._next_attempt - time.monotonic()
        return max(0.01, min(remaining, self.config.flush_interval))

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Log delivery loop error: {e}")
            self._wakeup.wait(self._wait_time())
            self._wakeup.clear()

    # Lifecycle

    def start(self) -> "TransportClient":
        """Restore any spooled entries and start the delivery thread."""
        if self._thread is not None and self._thread.is_alive():
            return self
        self.buffer.load_from_disk()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="logrelay-delivery", daemon=True)
        self._thread.start()
        return self

    def close(self, timeout: float = 5.0) -> None:
        """Try a final flush, stop the delivery thread and persist what is left."""
        self.flush(timeout)
        self._stop.set()
        self._wakeup.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.buffer.persist_to_disk()
        self.transport.close()

    def __enter__(self) -> "TransportClient":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
