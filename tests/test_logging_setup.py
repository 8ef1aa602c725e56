"""Tests for process logging setup."""

import json
import logging

import pytest

from logrelay.config import Config, StorageConfig
from logrelay.logging_setup import DailyJsonFileHandler, configure_logging, level_name


@pytest.mark.parametrize("levelno, expected", [
    (logging.DEBUG, "debug"),
    (logging.INFO, "info"),
    (logging.WARNING, "warn"),
    (logging.ERROR, "error"),
    (logging.CRITICAL, "error"),
])
def test_level_name(levelno, expected):
    assert level_name(levelno) == expected


def _emit(handler, level, message):
    record = logging.LogRecord("logrelay.test", level, __file__, 10, message, None, None)
    handler.handle(record)


def test_handler_writes_json_lines(tmp_path):
    handler = DailyJsonFileHandler(str(tmp_path), "combined", max_bytes=1024 * 1024)
    _emit(handler, logging.INFO, "server started")

    path = handler.current_path()
    assert path.name.startswith("combined-") and path.suffix == ".log"
    entry = json.loads(path.read_text().splitlines()[0])
    assert entry["level"] == "info"
    assert entry["message"] == "server started"
    assert entry["source"] == "logrelay"
    assert entry["metadata"]["logger"] == "logrelay.test"


def test_handler_respects_level_and_records_exceptions(tmp_path):
    handler = DailyJsonFileHandler(str(tmp_path), "error", max_bytes=1024 * 1024, level=logging.ERROR)
    test_logger = logging.getLogger("logrelay.test.errors")
    test_logger.propagate = False
    test_logger.addHandler(handler)
    try:
        test_logger.warning("ignored")
        try:
            raise RuntimeError("disk gone")
        except RuntimeError:
            test_logger.exception("write failed")
    finally:
        test_logger.removeHandler(handler)
        test_logger.propagate = True

    lines = handler.current_path().read_text().splitlines()
    assert len(lines) == 1
    entry = json.loads(lines[0])
    assert entry["message"] == "write failed"
    assert "RuntimeError: disk gone" in entry["metadata"]["exception"]


def test_handler_rotates_by_size(tmp_path):
    handler = DailyJsonFileHandler(str(tmp_path), "combined", max_bytes=400)
    for i in range(10):
        _emit(handler, logging.INFO, f"message number {i}")

    files = sorted(tmp_path.glob("combined-*.log"))
    assert len(files) > 1
    assert all(f.stat().st_size <= 400 for f in files)


def test_configure_logging_installs_file_handlers_once(tmp_path):
    config = Config()
    config.storage = StorageConfig(log_dir=str(tmp_path))
    root = logging.getLogger()
    before = list(root.handlers)
    try:
        configure_logging(config)
        configure_logging(config)
        handlers = [h for h in root.handlers if isinstance(h, DailyJsonFileHandler)]
        assert sorted(h.prefix for h in handlers) == ["combined", "error"]
        assert all(h.directory == tmp_path for h in handlers)
    finally:
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)


def test_rotation_keeps_records_in_order(tmp_path):
    handler = DailyJsonFileHandler(str(tmp_path), "combined", max_bytes=400)
    root = logging.getLogger()
    previous_level = root.level
    root.setLevel(logging.INFO)
    root.addHandler(handler)
    try:
        worker = logging.getLogger("worker")
        for i in range(10):
            worker.info(f"message number {i}")
    finally:
        root.removeHandler(handler)
        root.setLevel(previous_level)

    files = sorted(tmp_path.glob("combined-*.log"))
    assert len(files) > 1
    messages = [json.loads(line)["message"] for f in files for line in f.read_text().splitlines()]
    assert messages == [f"message number {i}" for i in range(10)]
