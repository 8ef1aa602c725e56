"""
Local durable buffer for events awaiting confirmed delivery.

Entries stay in the buffer until the transport client acknowledges them.
Growth is bounded by a maximum entry count and a maximum entry age; when a
bound is exceeded the oldest entries are evicted first and the eviction is
logged. With a spool path configured the buffer is mirrored to a JSON-lines
file so entries survive a process restart.
"""

import json
import logging
import os
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .models import LogEvent

logger = logging.getLogger(__name__)


class EntryState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in-flight"
    FAILED = "failed"


@dataclass
class BufferedEntry:
    """A log event plus its delivery state."""

    event: LogEvent
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: EntryState = EntryState.PENDING
    enqueued_at: float = field(default_factory=time.time)
    attempts: int = 0

    def to_record(self) -> Dict[str, object]:
        return {
            'id': self.id,
            'event': self.event.to_record(),
            'state': self.state.value,
            'enqueued_at': self.enqueued_at,
            'attempts': self.attempts,
        }

    @classmethod
    def from_record(cls, record: Dict[str, object]) -> "BufferedEntry":
        state = EntryState(record.get('state', EntryState.PENDING.value))
        if state == EntryState.IN_FLIGHT:
            # Delivery outcome unknown after a restart; send again
            state = EntryState.PENDING
        return cls(
            event=LogEvent.from_record(record['event']),
            id=str(record['id']),
            state=state,
            enqueued_at=float(record.get('enqueued_at', time.time())),
            attempts=int(record.get('attempts', 0)),
        )


class LocalBuffer:
    """Thread-safe FIFO of buffered entries with size/age eviction."""

    def __init__(self, max_size: int = 1000, max_age: Optional[float] = None,
                 spool_path: Optional[str] = None):
        self.max_size = max_size
        self.max_age = max_age
        self.spool_path = Path(spool_path) if spool_path else None
        self.evicted = 0
        self.dirty = False
        self._entries: "OrderedDict[str, BufferedEntry]" = OrderedDict()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def enqueue(self, event: LogEvent, now: Optional[float] = None) -> BufferedEntry:
        """
        Append an event, evicting the oldest entries if a bound is exceeded.

        Args:
            event: The event to buffer
            now: Enqueue time in seconds since the epoch (defaults to time.time())

        Returns:
            BufferedEntry: The new entry
        """
        entry = BufferedEntry(event=event, enqueued_at=time.time() if now is None else now)
        with self._lock:
            self._entries[entry.id] = entry
            self.dirty = True
            self._evict(entry.enqueued_at)
        return entry

    def _evict(self, now: float) -> None:
        dropped = 0
        if self.max_age is not None:
            cutoff = now - self.max_age
            while self._entries:
                oldest = next(iter(self._entries.values()))
                if oldest.enqueued_at >= cutoff:
                    break
                self._entries.popitem(last=False)
                dropped += 1
        while self.max_size and len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            dropped += 1
        if dropped:
            self.evicted += dropped
            self.dirty = True
            logger.warning(f"Log buffer bound exceeded, evicted {dropped} oldest entr{'y' if dropped == 1 else 'ies'}")

    def drain(self) -> List[BufferedEntry]:
        """
        Return every entry awaiting delivery, oldest first, without removing it.

        Returns:
            List[BufferedEntry]: Pending and failed entries
        """
        with self._lock:
            return [e for e in self._entries.values() if e.state != EntryState.IN_FLIGHT]

    def mark_in_flight(self, entry_ids: Iterable[str]) -> None:
        self._set_state(entry_ids, EntryState.IN_FLIGHT, count_attempt=True)

    def mark_failed(self, entry_ids: Iterable[str]) -> None:
        self._set_state(entry_ids, EntryState.FAILED)

    def _set_state(self, entry_ids: Iterable[str], state: EntryState, count_attempt: bool = False) -> None:
        with self._lock:
            for entry_id in entry_ids:
                entry = self._entries.get(entry_id)
                if entry is not None:
                    entry.state = state
                    if count_attempt:
                        entry.attempts += 1

    def acknowledge(self, entry_ids: Iterable[str]) -> int:
        """
        Remove entries whose delivery was confirmed.

        Returns:
            int: Number of entries removed
        """
        removed = 0
        with self._lock:
            for entry_id in entry_ids:
                if self._entries.pop(entry_id, None) is not None:
                    removed += 1
            if removed:
                self.dirty = True
        return removed

    def stats(self) -> Dict[str, int]:
        with self._lock:
            counts = {state.value: 0 for state in EntryState}
            for entry in self._entries.values():
                counts[entry.state.value] += 1
            counts['total'] = len(self._entries)
            counts['evicted'] = self.evicted
            return counts

    def persist_to_disk(self) -> None:
        """
        Write all entries to the spool file, replacing its previous content.

        The file is written to a temporary sibling and moved into place so a
        crash mid-write never leaves a truncated spool.
        """
        if self.spool_path is None:
            return
        with self._lock:
            lines = [json.dumps(e.to_record(), ensure_ascii=False) for e in self._entries.values()]
            self.dirty = False
        try:
            self.spool_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.spool_path.with_name(self.spool_path.name + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write("\n".join(lines) + ("\n" if lines else ""))
            os.replace(tmp_path, self.spool_path)
        except OSError as e:
            logger.warning(f"Could not persist log buffer to {self.spool_path}: {e}")

    def load_from_disk(self) -> int:
        """
        Restore entries from the spool file, ahead of anything already queued.

        Corrupt lines are skipped with a warning.

        Returns:
            int: Number of entries restored
        """
        if self.spool_path is None or not self.spool_path.exists():
            return 0

        restored = []
        try:
            with open(self.spool_path, "r", encoding="utf-8") as f:
                for line_number, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        restored.append(BufferedEntry.from_record(json.loads(line)))
                    except (ValueError, KeyError, TypeError) as e:
                        logger.warning(f"Skipping corrupt spool line {self.spool_path}:{line_number}: {e}")
        except OSError as e:
            logger.warning(f"Could not read log buffer spool {self.spool_path}: {e}")
            return 0

        with self._lock:
            current = list(self._entries.values())
            self._entries.clear()
            for entry in restored + current:
                self._entries.setdefault(entry.id, entry)
            self._evict(time.time())

        if restored:
            logger.info(f"Restored {len(restored)} buffered log entries from {self.spool_path}")
        return len(restored)
