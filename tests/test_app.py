"""Tests for server startup."""

import pytest
from fastapi.testclient import TestClient

from logrelay import __version__
from logrelay.app import create_logrelay_app
from logrelay.config import StorageConfig


def test_startup_writes_startup_event(config):
    app, startup_event = create_logrelay_app(config, configure_logs=False)

    assert startup_event.source == "logrelay"
    assert startup_event.metadata["version"] == __version__
    assert startup_event.metadata["port"] == config.server.port

    with TestClient(app) as client:
        stored = client.get("/api/logs/logrelay").json()["data"]
    assert [e["message"] for e in stored] == ["logrelay service started"]


def test_unusable_log_directory_is_fatal(config, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    config.storage = StorageConfig(log_dir=str(blocker / "logs"))

    with pytest.raises(SystemExit) as excinfo:
        create_logrelay_app(config, configure_logs=False)
    assert excinfo.value.code == 1
