"""
Sliding-window alerting on error and warning rates.

The monitor keeps the arrival times of recent error and warn events. When a
count reaches its threshold and at least one full window has passed since the
previous alert, an Alert is produced. Counters are never reset by an alert;
only the cooldown gate is. This is best-effort notification, not a delivery
guarantee.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Union

from .config import AlertConfig
from .models import LogLevel


@dataclass(frozen=True)
class Alert:
    """An alert raised by the monitor."""

    type: str
    message: str
    count: int

    def to_payload(self) -> Dict[str, object]:
        return {'type': self.type, 'message': self.message, 'count': self.count}


class AlertMonitor:
    """Tracks error/warn counts over a sliding window and gates alerts by cooldown."""

    def __init__(self, config: AlertConfig):
        self.config = config
        self._errors: Deque[float] = deque()
        self._warnings: Deque[float] = deque()
        self._last_alert: Optional[float] = None
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self.config.window_seconds
        for window in (self._errors, self._warnings):
            while window and window[0] <= cutoff:
                window.popleft()

    def record(self, level: Union[str, LogLevel], now: Optional[float] = None) -> Optional[Alert]:
        """
        Record one event and return an Alert if a threshold is crossed.

        Args:
            level: Level of the accepted event
            now: Arrival time in seconds (defaults to time.monotonic())

        Returns:
            Optional[Alert]: The alert to broadcast, if any
        """
        level = LogLevel.parse(level)
        now = time.monotonic() if now is None else now

        with self._lock:
            if level == LogLevel.ERROR:
                self._errors.append(now)
            elif level == LogLevel.WARN:
                self._warnings.append(now)
            self._prune(now)

            if self._last_alert is not None and now - self._last_alert < self.config.window_seconds:
                return None

            minutes = self.config.window_seconds / 60
            window_text = f"{minutes:g} minute{'s' if minutes != 1 else ''}"
            alert = None
            if len(self._errors) >= self.config.error_threshold:
                alert = Alert(
                    type='error',
                    message=f"{len(self._errors)} errors in the last {window_text}",
                    count=len(self._errors),
                )
            elif len(self._warnings) >= self.config.warn_threshold:
                alert = Alert(
                    type='warning',
                    message=f"{len(self._warnings)} warnings in the last {window_text}",
                    count=len(self._warnings),
                )

            if alert is not None:
                self._last_alert = now
            return alert

    def stats(self, now: Optional[float] = None) -> Dict[str, int]:
        """Current error and warning counts inside the window."""
        now = time.monotonic() if now is None else now
        with self._lock:
            self._prune(now)
            return {'errors': len(self._errors), 'warnings': len(self._warnings)}
