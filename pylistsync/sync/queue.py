"""Durable mutation queue.

Every local write appends a mutation record here. Records are consumed in
sequence order by the push pass and removed only once the remote operation
succeeded.
"""

import json
import logging
from typing import Any, Optional

from ..database import Database
from ..exceptions import LocalStorageError
from ..models import EntityKind, MutationRecord, OperationKind
from ..utils import MAX_RETRIES, format_timestamp, utcnow

logger = logging.getLogger(__name__)


def _json_fallback(obj: Any) -> Any:
    """JSON serialization fallback for datetimes in payload snapshots."""
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(
        f"Object of type {obj.__class__.__name__} is not JSON serializable"
    )


class MutationQueue:
    """SQLite-backed FIFO of pending local write intents.

    This class provides:
    - Durable storage of mutation records in the local database
    - Strict sequence-id ordering
    - Idempotent acknowledgement
    - Retry bookkeeping and inert (abandoned) records
    """

    def __init__(self, db: Database, max_retries: int = MAX_RETRIES):
        """Initialize the queue.

        Args:
            db: Local database holding the sync_queue table
            max_retries: Retry count at which a record counts as abandoned
        """
        self.db = db
        self.max_retries = max_retries

    def enqueue(
        self,
        operation: OperationKind,
        entity_kind: EntityKind,
        entity_id: str,
        payload: dict[str, Any],
    ) -> MutationRecord:
        """Append a mutation record.

        Joins the caller's transaction when called inside
        ``Database.transaction()``.

        Args:
            operation: CREATE, UPDATE or DELETE
            entity_kind: Kind of the target entity
            entity_id: Identifier of the target entity
            payload: Snapshot of the entity at enqueue time

        Returns:
            The stored record with its new sequence id

        Raises:
            LocalStorageError: If the append fails
        """
        operation = OperationKind(operation)
        entity_kind = EntityKind(entity_kind)
        enqueued_at = utcnow()

        try:
            payload_json = json.dumps(payload, default=_json_fallback)
        except (TypeError, ValueError) as e:
            raise LocalStorageError(f"Payload is not serializable: {e}") from e

        cursor = self.db.execute(
            """
            INSERT INTO sync_queue
                (operation, entity_kind, entity_id, payload, enqueued_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                operation.value,
                entity_kind.value,
                entity_id,
                payload_json,
                format_timestamp(enqueued_at),
            ),
        )
        sequence_id = cursor.lastrowid
        logger.debug(
            "Enqueued %s %s/%s as #%s",
            operation.value,
            entity_kind.value,
            entity_id,
            sequence_id,
        )
        return MutationRecord(
            sequence_id=sequence_id,
            operation=operation,
            entity_kind=entity_kind,
            entity_id=entity_id,
            payload=json.loads(payload_json),
            enqueued_at=enqueued_at,
        )

    def dequeue_ready(self) -> list[MutationRecord]:
        """Return all queued records, oldest first.

        Abandoned records are included; the push pass skips them.
        """
        rows = self.db.fetchall("SELECT * FROM sync_queue ORDER BY sequence_id ASC")
        return [
            MutationRecord.from_row(row, json.loads(row["payload"])) for row in rows
        ]

    def get(self, sequence_id: int) -> Optional[MutationRecord]:
        """Return one record, or None if it is not queued."""
        row = self.db.fetchone(
            "SELECT * FROM sync_queue WHERE sequence_id = ?", (sequence_id,)
        )
        if row is None:
            return None
        return MutationRecord.from_row(row, json.loads(row["payload"]))

    def acknowledge(self, sequence_id: int) -> None:
        """Permanently remove a record. Unknown ids are ignored."""
        self.db.execute("DELETE FROM sync_queue WHERE sequence_id = ?", (sequence_id,))

    def increment_retry(self, sequence_id: int, error: Optional[str] = None) -> None:
        """Count a failed push attempt for a record.

        Args:
            sequence_id: Record to update
            error: Message of the failure
        """
        self.db.execute(
            """
            UPDATE sync_queue
            SET retry_count = retry_count + 1,
                last_error = ?
            WHERE sequence_id = ?
            """,
            (error, sequence_id),
        )

    def abandon(self, sequence_id: int, error: Optional[str] = None) -> None:
        """Make a record inert without removing it."""
        self.db.execute(
            """
            UPDATE sync_queue
            SET abandoned = 1,
                last_error = ?
            WHERE sequence_id = ?
            """,
            (error, sequence_id),
        )

    def is_abandoned(self, record: MutationRecord) -> bool:
        """Check whether a record will no longer be transmitted."""
        return record.abandoned or record.retry_count >= self.max_retries

    def count_pending(self) -> int:
        """Number of records that are still transmittable."""
        row = self.db.fetchone(
            """
            SELECT COUNT(*) AS count FROM sync_queue
            WHERE abandoned = 0 AND retry_count < ?
            """,
            (self.max_retries,),
        )
        return row["count"]

    def count_abandoned(self) -> int:
        """Number of inert records."""
        row = self.db.fetchone(
            """
            SELECT COUNT(*) AS count FROM sync_queue
            WHERE abandoned = 1 OR retry_count >= ?
            """,
            (self.max_retries,),
        )
        return row["count"]

    def list_abandoned(self) -> list[MutationRecord]:
        """Return inert records, oldest first."""
        return [record for record in self.dequeue_ready() if self.is_abandoned(record)]

    def purge_abandoned(self) -> int:
        """Delete all inert records.

        Returns:
            Number of records deleted
        """
        cursor = self.db.execute(
            "DELETE FROM sync_queue WHERE abandoned = 1 OR retry_count >= ?",
            (self.max_retries,),
        )
        if cursor.rowcount:
            logger.info(f"Purged {cursor.rowcount} abandoned mutation record(s)")
        return cursor.rowcount

    def clear(self) -> int:
        """Delete every record.

        Returns:
            Number of records deleted
        """
        cursor = self.db.execute("DELETE FROM sync_queue")
        return cursor.rowcount
