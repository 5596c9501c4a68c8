"""Tests for the durable mutation queue."""

from datetime import datetime

import pytest

from pylistsync.database import Database
from pylistsync.exceptions import LocalStorageError
from pylistsync.models import EntityKind, OperationKind
from pylistsync.sync.queue import MutationQueue


class TestEnqueue:
    """Tests for appending mutation records."""

    def test_enqueue_assigns_increasing_sequence_ids(self, queue):
        """Test that each record gets a larger sequence id."""
        first = queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "L1", {})
        second = queue.enqueue(OperationKind.UPDATE, EntityKind.LISTS, "L1", {})
        assert second.sequence_id > first.sequence_id

    def test_enqueue_stores_payload_snapshot(self, queue):
        """Test that the payload is stored and returned unchanged."""
        record = queue.enqueue(
            OperationKind.CREATE,
            EntityKind.ITEMS,
            "I1",
            {"id": "I1", "list_id": "L1", "name": "Milk"},
        )
        stored = queue.get(record.sequence_id)

        assert stored.payload == {"id": "I1", "list_id": "L1", "name": "Milk"}
        assert stored.operation == OperationKind.CREATE
        assert stored.entity_kind == EntityKind.ITEMS
        assert stored.retry_count == 0
        assert stored.abandoned is False

    def test_enqueue_serializes_datetimes(self, queue):
        """Test that datetimes in payloads are stored as ISO strings."""
        record = queue.enqueue(
            OperationKind.UPDATE,
            EntityKind.LISTS,
            "L1",
            {"updated_at": datetime(2025, 1, 15, 10, 30)},
        )
        assert record.payload == {"updated_at": "2025-01-15T10:30:00"}

    def test_enqueue_rejects_unserializable_payload(self, queue):
        """Test that a payload that cannot be stored raises LocalStorageError."""
        with pytest.raises(LocalStorageError, match="not serializable"):
            queue.enqueue(
                OperationKind.UPDATE, EntityKind.LISTS, "L1", {"bad": object()}
            )
        assert queue.dequeue_ready() == []

    def test_enqueue_accepts_string_kinds(self, queue):
        """Test that plain strings are converted to enum values."""
        record = queue.enqueue("DELETE", "items", "I1", {})
        assert record.operation == OperationKind.DELETE
        assert record.entity_kind == EntityKind.ITEMS


class TestDequeue:
    """Tests for reading records in order."""

    def test_dequeue_ready_is_fifo(self, queue):
        """Test that records come back in enqueue order."""
        for entity_id in ("A", "B", "C"):
            queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, entity_id, {})

        records = queue.dequeue_ready()
        assert [r.entity_id for r in records] == ["A", "B", "C"]

    def test_dequeue_ready_does_not_remove(self, queue):
        """Test that reading the queue leaves records in place."""
        queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "A", {})
        queue.dequeue_ready()
        assert len(queue.dequeue_ready()) == 1

    def test_dequeue_ready_includes_abandoned(self, queue):
        """Test that inert records stay visible."""
        record = queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "A", {})
        queue.abandon(record.sequence_id, "rejected")

        records = queue.dequeue_ready()
        assert len(records) == 1
        assert records[0].abandoned is True
        assert records[0].last_error == "rejected"

    def test_records_survive_reopen(self, tmp_path):
        """Test that the queue is durable across database connections."""
        path = tmp_path / "listsync.db"
        db = Database(path)
        MutationQueue(db).enqueue(OperationKind.CREATE, EntityKind.LISTS, "A", {})
        db.close()

        reopened = Database(path)
        try:
            records = MutationQueue(reopened).dequeue_ready()
            assert [r.entity_id for r in records] == ["A"]
        finally:
            reopened.close()


class TestAcknowledge:
    """Tests for removing delivered records."""

    def test_acknowledge_removes_record(self, queue):
        """Test that acknowledged records are gone."""
        record = queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "A", {})
        queue.acknowledge(record.sequence_id)
        assert queue.get(record.sequence_id) is None

    def test_acknowledge_is_idempotent(self, queue):
        """Test that acknowledging twice, or an unknown id, is a no-op."""
        keep = queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "A", {})
        record = queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "B", {})

        queue.acknowledge(record.sequence_id)
        queue.acknowledge(record.sequence_id)
        queue.acknowledge(9999)

        assert [r.sequence_id for r in queue.dequeue_ready()] == [keep.sequence_id]


class TestRetryBookkeeping:
    """Tests for retry counts and abandoned records."""

    def test_increment_retry(self, queue):
        """Test that retry count and last error are updated."""
        record = queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "A", {})
        queue.increment_retry(record.sequence_id, "timeout")
        queue.increment_retry(record.sequence_id, "timeout again")

        stored = queue.get(record.sequence_id)
        assert stored.retry_count == 2
        assert stored.last_error == "timeout again"

    def test_record_at_retry_cap_is_abandoned(self, queue):
        """Test that reaching the retry cap makes a record inert."""
        record = queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "A", {})
        for _ in range(queue.max_retries - 1):
            queue.increment_retry(record.sequence_id)
        assert not queue.is_abandoned(queue.get(record.sequence_id))

        queue.increment_retry(record.sequence_id)
        assert queue.is_abandoned(queue.get(record.sequence_id))

    def test_counts(self, queue):
        """Test pending and abandoned counters."""
        a = queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "A", {})
        queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "B", {})
        c = queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "C", {})
        queue.abandon(a.sequence_id, "rejected")
        for _ in range(queue.max_retries):
            queue.increment_retry(c.sequence_id)

        assert queue.count_pending() == 1
        assert queue.count_abandoned() == 2
        assert [r.entity_id for r in queue.list_abandoned()] == ["A", "C"]

    def test_purge_abandoned(self, queue):
        """Test that purging removes only inert records."""
        a = queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "A", {})
        queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "B", {})
        queue.abandon(a.sequence_id, "rejected")

        assert queue.purge_abandoned() == 1
        assert [r.entity_id for r in queue.dequeue_ready()] == ["B"]
        assert queue.purge_abandoned() == 0

    def test_clear(self, queue):
        """Test that clear empties the queue."""
        queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "A", {})
        queue.enqueue(OperationKind.CREATE, EntityKind.LISTS, "B", {})
        assert queue.clear() == 2
        assert queue.dequeue_ready() == []
