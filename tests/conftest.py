"""Shared pytest fixtures."""

import socket
import threading
import time
from datetime import datetime, timezone

import pytest
import uvicorn
from fastapi.testclient import TestClient

from logrelay.api import build_service, create_app
from logrelay.config import AlertConfig, ClientConfig, Config, StorageConfig
from logrelay.errors import TransportError, ValidationError
from logrelay.file_store import RotatingFileStore
from logrelay.transport import Transport

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeTransport(Transport):
    """In-memory transport that can be told to fail or reject deliveries."""

    name = "fake"

    def __init__(self, fail_first: int = 0, reachable: bool = True, reject=()):
        self.fail_first = fail_first
        self.reachable = reachable
        self.reject = set(reject)
        self.attempts = 0
        self.probes = 0
        self.received = []
        self.closed = False

    def probe(self):
        self.probes += 1
        if not self.reachable:
            raise TransportError("connection refused")

    def deliver(self, event):
        if not self.reachable:
            raise TransportError("connection refused")
        self.attempts += 1
        if self.attempts <= self.fail_first:
            raise TransportError("server returned 503", status_code=503)
        if event.message in self.reject:
            raise ValidationError("message rejected")
        self.received.append(event)

    def close(self):
        self.closed = True


@pytest.fixture
def storage_config(tmp_path):
    return StorageConfig(log_dir=str(tmp_path / "logs"), max_bytes=10 * 1024 * 1024, retention_days=14)


@pytest.fixture
def store(storage_config):
    return RotatingFileStore(storage_config, clock=lambda: FIXED_NOW)


@pytest.fixture
def client_config():
    return ClientConfig(
        server_url="http://testserver",
        source="test-producer",
        buffer_size=100,
        flush_interval=0.05,
        backoff_base=0.0,
        backoff_max=0.0,
    )


@pytest.fixture
def config(tmp_path):
    config = Config()
    config.storage = StorageConfig(log_dir=str(tmp_path / "server-logs"))
    config.alerts = AlertConfig(error_threshold=5, warn_threshold=10, window_seconds=300)
    config.client = ClientConfig(server_url="http://testserver", source="test-producer")
    return config


@pytest.fixture
def service(config):
    return build_service(config)


@pytest.fixture
def api_client(config, service):
    app = create_app(config, service=service)
    with TestClient(app) as client:
        yield client


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class LiveServer:
    """
    Runs the app under uvicorn in a background thread on a fixed local port.

    Each ``start`` builds a fresh app and service over the same config, so a
    stop/start pair behaves like a server restart that keeps its log files.
    """

    def __init__(self, config: Config):
        self.config = config
        self.port = _free_port()
        self.url = f"http://127.0.0.1:{self.port}"
        self.service = None
        self._server = None
        self._thread = None

    def start(self, timeout: float = 5.0) -> "LiveServer":
        self.service = build_service(self.config)
        app = create_app(self.config, service=self.service)
        self._server = uvicorn.Server(uvicorn.Config(
            app, host="127.0.0.1", port=self.port, log_level="warning", timeout_graceful_shutdown=1,
        ))
        self._thread = threading.Thread(target=self._server.run, name="live-server", daemon=True)
        self._thread.start()

        deadline = time.monotonic() + timeout
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                raise RuntimeError(f"Server did not start on port {self.port}")
            time.sleep(0.02)
        return self

    def stop(self, timeout: float = 5.0) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
        self._server = None
        self._thread = None


@pytest.fixture
def live_server(config):
    server = LiveServer(config).start()
    try:
        yield server
    finally:
        server.stop()
