"""
Process logging configuration.

Console output uses the same format everywhere. The ingestion server also
keeps its own diagnostics as JSON lines in level-partitioned daily files at
the log root (``combined-YYYY-MM-DD.log`` and ``error-YYYY-MM-DD.log``),
rotated by size in the same way as the event store.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .config import Config
from .file_store import rotate_if_needed

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_EXC_FORMATTER = logging.Formatter()


def level_name(levelno: int) -> str:
    """Map a stdlib logging level number onto a logrelay level name."""
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


class DailyJsonFileHandler(logging.Handler):
    """Writes records as JSON lines to ``<directory>/<prefix>-<YYYY-MM-DD>.log``."""

    def __init__(self, directory: str, prefix: str, max_bytes: int, level: int = logging.NOTSET,
                 source: str = "logrelay"):
        super().__init__(level)
        self.directory = Path(directory)
        self.prefix = prefix
        self.max_bytes = max_bytes
        self.source = source

    def current_path(self) -> Path:
        day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.directory / f"{self.prefix}-{day}.log"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                'level': level_name(record.levelno),
                'message': record.getMessage(),
                'source': self.source,
                'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                'metadata': {
                    'logger': record.name,
                    'module': record.module,
                    'line': record.lineno,
                },
            }
            if record.exc_info:
                entry['metadata']['exception'] = _EXC_FORMATTER.formatException(record.exc_info)
            data = (json.dumps(entry, ensure_ascii=False, default=str) + "\n").encode("utf-8")

            path = self.current_path()
            path.parent.mkdir(parents=True, exist_ok=True)
            rotate_if_needed(path, self.max_bytes, len(data), announce=False)
            with open(path, "ab") as f:
                f.write(data)
        except Exception:
            self.handleError(record)


def configure_logging(config: Config, log_dir: Optional[str] = None, to_files: bool = True) -> None:
    """
    Configure root logging for a logrelay process.

    Args:
        config: Loaded configuration (server.log_level and storage settings)
        log_dir: Directory for the level-partitioned files (defaults to storage.log_dir)
        to_files: Whether to attach the combined/error file handlers
    """
    level = getattr(logging, config.server.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    if not to_files:
        return

    directory = log_dir or config.storage.log_dir
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, DailyJsonFileHandler):
            root.removeHandler(handler)

    root.addHandler(DailyJsonFileHandler(directory, "combined", config.storage.max_bytes))
    root.addHandler(DailyJsonFileHandler(directory, "error", config.storage.max_bytes, level=logging.ERROR))
