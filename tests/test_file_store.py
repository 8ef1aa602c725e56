"""Tests for the rotating file store."""

import json
import os
import threading
import time

import pytest

from logrelay.config import StorageConfig
from logrelay.errors import StorageError
from logrelay.file_store import RotatingFileStore, rotate_if_needed, safe_source_name
from logrelay.models import create_event

from .conftest import FIXED_NOW


def _store(tmp_path, **overrides):
    config = StorageConfig(log_dir=str(tmp_path / "logs"), **overrides)
    return RotatingFileStore(config, clock=lambda: FIXED_NOW)


class TestAppend:
    def test_events_land_in_per_source_daily_files(self, store):
        event = create_event("info", "user signed in", source="auth-service", timestamp=FIXED_NOW)

        path = store.append(event)

        assert path == store.root / "auth-service" / "2024-05-01.log"
        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line) for line in lines] == [event.to_record()]

    def test_sources_are_listed_from_directories(self, store):
        for source in ("web", "api", "worker"):
            store.append(create_event("info", "hello", source=source))

        assert store.list_sources() == ["api", "web", "worker"]

    def test_empty_store_has_no_sources(self, store):
        assert store.list_sources() == []
        assert store.read_all() == []

    def test_read_all_preserves_arrival_order(self, store):
        for i in range(5):
            store.append(create_event("info", f"event {i}", source="svc"))

        assert [e.message for e in store.read_all("svc")] == [f"event {i}" for i in range(5)]

    def test_unwritable_root_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        store = RotatingFileStore(StorageConfig(log_dir=str(blocker / "logs")))

        with pytest.raises(StorageError):
            store.ensure_root()
        with pytest.raises(StorageError):
            store.append(create_event("error", "cannot store", source="svc"))


class TestRotation:
    def test_files_never_exceed_threshold_and_nothing_is_lost(self, tmp_path):
        store = _store(tmp_path, max_bytes=1000)
        for i in range(20):
            store.append(create_event("info", f"payment processed {i:02d}", source="billing",
                                      metadata={"amount": i * 10}))

        files = store.files_for("billing")
        assert len(files) > 1
        assert all(f.stat().st_size <= 1000 for f in files)
        assert files[-1].name == "2024-05-01.log"
        assert [e.message for e in store.read_all("billing")] == [
            f"payment processed {i:02d}" for i in range(20)
        ]

    def test_rotate_if_needed_keeps_small_files(self, tmp_path):
        path = tmp_path / "app.log"
        path.write_text("x" * 10)

        assert rotate_if_needed(path, max_bytes=100, incoming=50) is None
        assert rotate_if_needed(tmp_path / "missing.log", max_bytes=1) is None

    def test_rotate_if_needed_never_overwrites(self, tmp_path):
        first = tmp_path / "app.log"
        first.write_text("a" * 20)
        rotated_a = rotate_if_needed(first, max_bytes=10)
        first.write_text("b" * 20)
        rotated_b = rotate_if_needed(first, max_bytes=10)

        assert rotated_a != rotated_b
        assert rotated_a.read_text() == "a" * 20
        assert rotated_b.read_text() == "b" * 20
        assert not first.exists()
        assert sorted([rotated_b, rotated_a]) == [rotated_a, rotated_b]

    def test_concurrent_appends_to_one_file_stay_whole(self, tmp_path):
        store = _store(tmp_path, max_bytes=2000)
        threads, per_thread = 8, 50
        start = threading.Barrier(threads)

        def produce(worker):
            start.wait()
            for i in range(per_thread):
                store.append(create_event("info", f"worker {worker} entry {i}", source="shared",
                                          metadata={"worker": worker, "seq": i}))

        workers = [threading.Thread(target=produce, args=(n,)) for n in range(threads)]
        for t in workers:
            t.start()
        for t in workers:
            t.join()

        files = store.files_for("shared")
        assert len(files) > 1
        records = [json.loads(line) for f in files for line in f.read_text(encoding="utf-8").splitlines()]
        assert len(records) == threads * per_thread
        seen = {(r["metadata"]["worker"], r["metadata"]["seq"]) for r in records}
        assert len(seen) == threads * per_thread
        # Each producer's own entries keep their order across rotated files
        for worker in range(threads):
            assert [r["metadata"]["seq"] for r in records if r["metadata"]["worker"] == worker] == list(range(per_thread))


class TestRetention:
    def test_prune_removes_only_expired_files(self, tmp_path):
        store = _store(tmp_path, retention_days=14)
        old_path = store.append(create_event("info", "old", source="legacy"))
        fresh_path = store.append(create_event("info", "fresh", source="web"))

        now = time.time()
        expired = now - 15 * 86400
        os.utime(old_path, (expired, expired))

        removed = store.prune(now=now)

        assert removed == [old_path]
        assert not old_path.exists()
        assert fresh_path.exists()
        assert store.list_sources() == ["web"]

    def test_prune_on_missing_root_is_a_no_op(self, tmp_path):
        assert _store(tmp_path).prune() == []


class TestCorruption:
    def test_corrupt_lines_are_skipped(self, store):
        path = store.append(create_event("info", "before", source="svc"))
        with open(path, "a", encoding="utf-8") as f:
            f.write("{this is not json\n")
            f.write('{"level": "info"}\n')
        store.append(create_event("info", "after", source="svc"))

        assert [e.message for e in store.read_all()] == ["before", "after"]


class TestSafeSourceName:
    @pytest.mark.parametrize("source, expected", [
        ("auth-service", "auth-service"),
        ("server-3010", "server-3010"),
        ("../etc/passwd", "_etc_passwd"),
        ("a b/c", "a_b_c"),
        ("   ", "_"),
    ])
    def test_names_stay_inside_root(self, source, expected):
        assert safe_source_name(source) == expected


def test_storage_info_reports_files_and_bytes(store):
    store.append(create_event("info", "hello", source="web"))
    info = store.get_storage_info()
    assert info["web"]["files"] == 1
    assert info["web"]["bytes"] > 0
