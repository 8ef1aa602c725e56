"""Tests for the local durable buffer."""

import threading

from logrelay.buffer import EntryState, LocalBuffer
from logrelay.models import create_event


def _event(i):
    return create_event("info", f"event {i}", source="svc")


class TestLocalBuffer:
    def test_drain_returns_entries_in_order_without_removing(self):
        buffer = LocalBuffer(max_size=10)
        for i in range(3):
            buffer.enqueue(_event(i))

        first = buffer.drain()
        second = buffer.drain()

        assert [e.event.message for e in first] == ["event 0", "event 1", "event 2"]
        assert [e.id for e in first] == [e.id for e in second]
        assert all(e.state == EntryState.PENDING for e in first)
        assert len(buffer) == 3

    def test_acknowledge_removes_only_confirmed_entries(self):
        buffer = LocalBuffer(max_size=10)
        entries = [buffer.enqueue(_event(i)) for i in range(3)]

        removed = buffer.acknowledge([entries[0].id, entries[2].id, "unknown"])

        assert removed == 2
        assert [e.event.message for e in buffer.drain()] == ["event 1"]

    def test_in_flight_entries_are_not_drained(self):
        buffer = LocalBuffer(max_size=10)
        a = buffer.enqueue(_event(0))
        b = buffer.enqueue(_event(1))

        buffer.mark_in_flight([a.id])
        assert [e.id for e in buffer.drain()] == [b.id]

        buffer.mark_failed([a.id])
        drained = buffer.drain()
        assert [e.id for e in drained] == [a.id, b.id]
        assert drained[0].state == EntryState.FAILED
        assert drained[0].attempts == 1

    def test_size_bound_evicts_oldest_first(self):
        buffer = LocalBuffer(max_size=3)
        for i in range(5):
            buffer.enqueue(_event(i))

        assert [e.event.message for e in buffer.drain()] == ["event 2", "event 3", "event 4"]
        assert buffer.evicted == 2

    def test_age_bound_evicts_expired_entries(self):
        buffer = LocalBuffer(max_size=10, max_age=60)
        buffer.enqueue(_event(0), now=1000.0)
        buffer.enqueue(_event(1), now=1030.0)
        buffer.enqueue(_event(2), now=1075.0)

        assert [e.event.message for e in buffer.drain()] == ["event 1", "event 2"]
        assert buffer.stats()["evicted"] == 1

    def test_concurrent_enqueue_loses_nothing(self):
        buffer = LocalBuffer(max_size=10000)

        def produce(worker):
            for i in range(200):
                buffer.enqueue(create_event("info", f"{worker}-{i}", source="svc"))

        threads = [threading.Thread(target=produce, args=(w,)) for w in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(buffer) == 1600
        assert len({e.id for e in buffer.drain()}) == 1600


class TestSpool:
    def test_persist_and_load_survive_restart(self, tmp_path):
        spool = tmp_path / "spool" / "buffer.jsonl"
        buffer = LocalBuffer(max_size=10, spool_path=str(spool))
        a = buffer.enqueue(_event(0))
        b = buffer.enqueue(_event(1))
        buffer.mark_in_flight([b.id])
        buffer.persist_to_disk()

        restarted = LocalBuffer(max_size=10, spool_path=str(spool))
        assert restarted.load_from_disk() == 2

        drained = restarted.drain()
        assert [e.id for e in drained] == [a.id, b.id]
        # Outcome of the in-flight delivery is unknown, so it is retried
        assert drained[1].state == EntryState.PENDING
        assert drained[1].event == b.event

    def test_restored_entries_come_before_new_ones(self, tmp_path):
        spool = tmp_path / "buffer.jsonl"
        old = LocalBuffer(spool_path=str(spool))
        old.enqueue(_event("old"))
        old.persist_to_disk()

        buffer = LocalBuffer(spool_path=str(spool))
        buffer.enqueue(_event("new"))
        buffer.load_from_disk()

        assert [e.event.message for e in buffer.drain()] == ["event old", "event new"]

    def test_corrupt_spool_lines_are_skipped(self, tmp_path):
        spool = tmp_path / "buffer.jsonl"
        buffer = LocalBuffer(spool_path=str(spool))
        buffer.enqueue(_event(0))
        buffer.persist_to_disk()
        with open(spool, "a") as f:
            f.write("{not json\n")

        restarted = LocalBuffer(spool_path=str(spool))
        assert restarted.load_from_disk() == 1

    def test_memory_only_buffer_has_no_spool(self, tmp_path):
        buffer = LocalBuffer()
        buffer.enqueue(_event(0))
        buffer.persist_to_disk()
        assert buffer.load_from_disk() == 0
        assert list(tmp_path.iterdir()) == []
