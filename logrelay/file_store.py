"""
Rotating file store for accepted log events.

Events are written as JSON lines into one file per (source, calendar day):

    <log_dir>/<source>/<YYYY-MM-DD>.log

Files that grow past the size threshold are renamed with a timestamp suffix
and a fresh file is started. A retention sweep deletes files whose
modification time is older than the retention window.
"""

import json
import logging
import os
import re
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import StorageConfig
from .errors import ParseError, StorageError
from .models import LogEvent, utcnow

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".log"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_source_name(source: str) -> str:
    """Map a source name onto a directory name that cannot escape the log root."""
    name = _UNSAFE_CHARS.sub("_", source.strip()).lstrip(".")
    return name or "_"


def rotate_if_needed(path: Path, max_bytes: int, incoming: int = 0,
                     announce: bool = True) -> Optional[Path]:
    """
    Rename ``path`` aside if appending ``incoming`` bytes would pass ``max_bytes``.

    The rotated file keeps the original stem and gets a UTC timestamp suffix,
    e.g. ``2024-05-01.20240501T120000123456.log``. Existing files are never
    overwritten.

    Args:
        path: Active file to check
        max_bytes: Size limit for the active file
        incoming: Bytes about to be appended
        announce: Log the rotation. Logging handlers pass False so the
            message does not re-enter the handler that is rotating.

    Returns:
        Optional[Path]: The rotated file path, or None if no rotation happened
    """
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return None

    if size == 0 or size + incoming <= max_bytes:
        return None

    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    target = path.with_name(f"{path.stem}.{stamp}{path.suffix}")
    counter = 1
    while target.exists():
        target = path.with_name(f"{path.stem}.{stamp}_{counter}{path.suffix}")
        counter += 1

    os.rename(path, target)
    if announce:
        logger.info(f"Rotated {path.name} -> {target.name} ({size} bytes)")
    return target


class RotatingFileStore:
    """Manages on-disk log storage with per-file serialized appends."""

    def __init__(self, config: StorageConfig, clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self.root = Path(config.log_dir)
        self.max_bytes = config.max_bytes
        self.retention_days = config.retention_days
        self._clock = clock or utcnow
        self._locks: Dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def ensure_root(self) -> None:
        """
        Create the log root directory.

        Raises:
            StorageError: If the directory cannot be created
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create log directory {self.root}: {e}") from e

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.Lock()
            return lock

    def active_file(self, source: str) -> Path:
        """Path of today's file for ``source``."""
        day = self._clock().strftime("%Y-%m-%d")
        return self.root / safe_source_name(source) / f"{day}{LOG_SUFFIX}"

    def append(self, event: LogEvent) -> Path:
        """
        Append one event as a JSON line to today's file for its source.

        Args:
            event: The validated event to persist

        Returns:
            Path: The file the event was written to

        Raises:
            StorageError: If the file system rejects the write
        """
        line = json.dumps(event.to_record(), ensure_ascii=False) + "\n"
        data = line.encode("utf-8")
        path = self.active_file(event.source)

        with self._lock_for(path):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                rotate_if_needed(path, self.max_bytes, len(data))
                with open(path, "ab") as f:
                    f.write(data)
            except OSError as e:
                logger.error(f"Failed to append log for {event.source} to {path}: {e}")
                raise StorageError(f"Failed to write {path}: {e}") from e

        return path

    def prune(self, now: Optional[float] = None) -> List[Path]:
        """
        Delete log files older than the retention window.

        Age is measured from each file's modification time. Source
        directories left empty are removed as well.

        Args:
            now: Reference time as a POSIX timestamp (defaults to time.time())

        Returns:
            List[Path]: Files that were removed
        """
        if not self.root.exists():
            return []

        cutoff = (now if now is not None else time.time()) - self.retention_days * 86400
        removed = []

        for path in sorted(self.root.rglob(f"*{LOG_SUFFIX}")):
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed.append(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not remove expired log file {path}: {e}")

        for directory in self.root.iterdir():
            if directory.is_dir() and not any(directory.iterdir()):
                try:
                    directory.rmdir()
                except OSError:
                    pass

        if removed:
            logger.info(f"Retention sweep removed {len(removed)} file(s) older than {self.retention_days}d")
        return removed

    def list_sources(self) -> List[str]:
        """
        List source names, derived from the top-level directories.

        Raises:
            StorageError: If the log root cannot be listed
        """
        if not self.root.exists():
            return []
        try:
            return sorted(
                p.name for p in self.root.iterdir()
                if p.is_dir() and not p.name.startswith(".")
            )
        except OSError as e:
            raise StorageError(f"Cannot list {self.root}: {e}") from e

    def files_for(self, source: str) -> List[Path]:
        """Log files for one source in write order (rotated before active, oldest day first)."""
        directory = self.root / safe_source_name(source)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.glob(f"*{LOG_SUFFIX}") if p.is_file())

    def read_all(self, source: Optional[str] = None) -> List[LogEvent]:
        """
        Read every stored event, optionally for a single source.

        Lines that fail to parse are skipped with a warning; a single corrupt
        line or unreadable file never aborts the whole read.

        Args:
            source: Optional source name to restrict the read to

        Returns:
            List[LogEvent]: Events in arrival order
        """
        sources = [source] if source else self.list_sources()
        events = []

        for src in sources:
            for path in self.files_for(src):
                events.extend(self._read_file(path))

        return events

    def _read_file(self, path: Path) -> List[LogEvent]:
        events = []
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                for line_number, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        events.append(self._parse_line(line, path, line_number))
                    except ParseError as e:
                        logger.warning(f"Skipping corrupt line {e.path}:{e.line_number}: {e}")
        except FileNotFoundError:
            # Pruned or rotated between listing and reading
            pass
        except OSError as e:
            logger.warning(f"Could not read log file {path}: {e}")
        return events

    @staticmethod
    def _parse_line(line: str, path: Path, line_number: int) -> LogEvent:
        try:
            return LogEvent.from_record(json.loads(line))
        except ValueError as e:
            raise ParseError(str(e).splitlines()[0], path=str(path), line_number=line_number) from e

    def get_storage_info(self) -> Dict[str, Dict[str, int]]:
        """
        Get file count and total size per source.

        Returns:
            Dict containing storage information for each source
        """
        info = {}
        for source in self.list_sources():
            files = self.files_for(source)
            info[source] = {
                'files': len(files),
                'bytes': sum(f.stat().st_size for f in files if f.exists()),
            }
        return info
