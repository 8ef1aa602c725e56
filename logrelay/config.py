"""
Configuration management for logrelay.

Settings are grouped into dataclass sections and filled from environment
variables, optionally overlaid with values from a YAML file. A Config object
is built once at process start and passed to the components that need it.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "logrelay-config.yml"


@dataclass
class ServerConfig:
    """Configuration for the ingestion server."""

    host: str = "0.0.0.0"
    port: int = 3015
    log_level: str = "info"
    access_log: bool = False
    max_connections: int = 100
    outbox_size: int = 256


@dataclass
class StorageConfig:
    """Configuration for the rotating file store."""

    log_dir: str = "./logs"
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    retention_days: int = 14
    prune_interval: float = 3600.0  # seconds
    default_source: str = "default"


@dataclass
class AlertConfig:
    """Thresholds for error/warning alerts."""

    error_threshold: int = 5
    warn_threshold: int = 10
    window_seconds: float = 300.0


@dataclass
class ClientConfig:
    """Configuration for producer-side transport clients."""

    server_url: str = "http://localhost:3015"
    source: str = "server-3010"
    channel: str = "http"
    timeout: float = 3.0
    buffer_size: int = 1000
    buffer_max_age: float = 86400.0  # seconds
    spool_path: Optional[str] = None
    flush_interval: float = 5.0
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    min_level: str = "debug"

    @property
    def ingest_url(self) -> str:
        return f"{self.server_url.rstrip('/')}/api/logs"

    @property
    def health_url(self) -> str:
        return f"{self.server_url.rstrip('/')}/health"

    @property
    def websocket_url(self) -> str:
        base = self.server_url.rstrip('/')
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/ws"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


class Config:
    """Main configuration class that loads settings from environment variables."""

    def __init__(self):
        self.server = self._load_server_config()
        self.storage = self._load_storage_config()
        self.alerts = self._load_alert_config()
        self.client = self._load_client_config()

    def _load_server_config(self) -> ServerConfig:
        """Load server configuration from environment variables."""
        return ServerConfig(
            host=os.getenv("LOGRELAY_HOST", "0.0.0.0"),
            port=int(os.getenv("LOGRELAY_PORT", "3015")),
            log_level=os.getenv("LOGRELAY_LOG_LEVEL", "info").lower(),
            access_log=_env_bool("LOGRELAY_ACCESS_LOG", "false"),
            max_connections=int(os.getenv("LOGRELAY_MAX_WS_CONNECTIONS", "100")),
            outbox_size=int(os.getenv("LOGRELAY_WS_OUTBOX_SIZE", "256")),
        )

    def _load_storage_config(self) -> StorageConfig:
        """Load file store configuration from environment variables."""
        return StorageConfig(
            log_dir=os.getenv("LOGRELAY_LOG_DIR", "./logs"),
            max_bytes=int(os.getenv("LOGRELAY_MAX_FILE_SIZE", str(10 * 1024 * 1024))),
            retention_days=int(os.getenv("LOGRELAY_RETENTION_DAYS", "14")),
            prune_interval=float(os.getenv("LOGRELAY_PRUNE_INTERVAL", "3600")),
            default_source=os.getenv("LOGRELAY_DEFAULT_SOURCE", "default"),
        )

    def _load_alert_config(self) -> AlertConfig:
        """Load alert thresholds from environment variables."""
        return AlertConfig(
            error_threshold=int(os.getenv("LOGRELAY_ALERT_ERRORS", "5")),
            warn_threshold=int(os.getenv("LOGRELAY_ALERT_WARNINGS", "10")),
            window_seconds=float(os.getenv("LOGRELAY_ALERT_WINDOW", "300")),
        )

    def _load_client_config(self) -> ClientConfig:
        """Load transport client configuration from environment variables."""
        return ClientConfig(
            server_url=os.getenv("LOGGING_SERVER_URL", "http://localhost:3015"),
            source=os.getenv("LOGRELAY_SOURCE", f"server-{os.getenv('PORT', '3010')}"),
            channel=os.getenv("LOGRELAY_CHANNEL", "http").lower(),
            timeout=float(os.getenv("LOGRELAY_HTTP_TIMEOUT", "3.0")),
            buffer_size=int(os.getenv("LOGRELAY_BUFFER_SIZE", "1000")),
            buffer_max_age=float(os.getenv("LOGRELAY_BUFFER_MAX_AGE", "86400")),
            spool_path=os.getenv("LOGRELAY_SPOOL_PATH") or None,
            flush_interval=float(os.getenv("LOGRELAY_FLUSH_INTERVAL", "5.0")),
            backoff_base=float(os.getenv("LOGRELAY_BACKOFF_BASE", "1.0")),
            backoff_max=float(os.getenv("LOGRELAY_BACKOFF_MAX", "60.0")),
            min_level=os.getenv("LOG_LEVEL", "debug").lower(),
        )

    def apply_overrides(self, data: Dict[str, Any]) -> None:
        """
        Overlay section values from a nested mapping.

        Args:
            data: Mapping of section name to a mapping of field values
        """
        for section_name, values in (data or {}).items():
            section = getattr(self, section_name, None)
            if section is None or not isinstance(values, dict):
                logger.warning(f"Ignoring unknown config section: {section_name}")
                continue
            known = {f.name for f in fields(section)}
            unknown = set(values) - known
            if unknown:
                logger.warning(f"Ignoring unknown keys in [{section_name}]: {sorted(unknown)}")
            setattr(self, section_name, replace(section, **{k: v for k, v in values.items() if k in known}))


def load_config(config_file: Optional[str] = None) -> Config:
    """
    Build a Config from the environment and an optional YAML file.

    The file path comes from the argument, then ``LOGRELAY_CONFIG``, then
    ``logrelay-config.yml`` in the working directory if it exists.

    Returns:
        Config: The loaded configuration
    """
    config = Config()
    path = Path(config_file or os.getenv("LOGRELAY_CONFIG", DEFAULT_CONFIG_FILE))

    if path.exists():
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
            config.apply_overrides(data)
        except (OSError, yaml.YAMLError, TypeError) as e:
            logger.warning(f"Failed to load config file {path}: {e}")

    return config
