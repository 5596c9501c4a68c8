"""Core sync engine: pushes the mutation queue and pulls remote changes."""

import logging
import threading
import time
from typing import Any, Callable, Optional, Protocol

from ..config import SyncSettings
from ..exceptions import LocalStorageError, RemoteError, SyncIncompleteError
from ..models import (
    Entity,
    EntityKind,
    MutationRecord,
    OperationKind,
    entity_from_remote,
)
from .gateway import RemoteGateway
from .payload import clean_payload_for_remote
from .queue import MutationQueue
from .resolver import ConflictResolver, MergeDecision
from .state import WatermarkTracker

logger = logging.getLogger(__name__)

# Pull order: lists before the items that reference them
PULL_ORDER = (EntityKind.LISTS, EntityKind.ITEMS)


class EntityStore(Protocol):
    """Local storage operations used by the pull pass."""

    def get_by_id(self, kind: EntityKind, entity_id: str) -> Optional[Entity]: ...

    def upsert_from_remote(self, entity: Entity) -> None: ...

    def merge_from_remote(
        self,
        remote: Entity,
        resolve: Callable[[Optional[Entity], Entity], MergeDecision],
    ) -> MergeDecision: ...


class SyncEngine:
    """Orchestrates push and pull passes for one device.

    ``process_queue`` and ``pull_remote_changes`` may be called concurrently
    and repeatedly from any trigger. At most one pass of each type runs at a
    time; a call made while the same pass is running returns immediately.
    Errors are contained within a pass and never reach the trigger.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        store: EntityStore,
        queue: MutationQueue,
        resolver: Optional[ConflictResolver] = None,
        watermarks: Optional[WatermarkTracker] = None,
        settings: Optional[SyncSettings] = None,
    ):
        """Initialize sync engine.

        Args:
            gateway: Remote store
            store: Local entity store
            queue: Mutation queue to drain
            resolver: Conflict resolver (last-writer-wins by default)
            watermarks: Pull watermarks (in-memory, starting at the epoch,
                by default)
            settings: Retry cap and batch size
        """
        self.gateway = gateway
        self.store = store
        self.queue = queue
        self.resolver = resolver or ConflictResolver()
        self.watermarks = watermarks or WatermarkTracker()
        self.settings = settings or SyncSettings()
        self.queue.max_retries = self.settings.max_retries

        self._push_lock = threading.Lock()
        self._pull_lock = threading.Lock()

    @property
    def is_pushing(self) -> bool:
        return self._push_lock.locked()

    @property
    def is_pulling(self) -> bool:
        return self._pull_lock.locked()

    # =========================
    # Push path
    # =========================

    def _create_empty_push_stats(self) -> dict:
        return {
            "busy": False,
            "pushed": 0,
            "failed": 0,
            "abandoned": 0,
            "skipped_abandoned": 0,
            "aborted": False,
            "errors": [],
        }

    def process_queue(self) -> dict:
        """Drain the mutation queue against the remote gateway.

        Records are sent oldest first. A failed record stays queued with an
        incremented retry count and the pass moves on to the next record.
        Permanent failures and records that reached the retry cap are left
        in the queue but never sent again. A failure that concerns the
        backend as a whole (credentials, URL, captive portal) stops the pass
        without touching the remaining records.

        Returns:
            Dictionary with push statistics; ``busy`` is True when another
            push pass was already running and nothing was done
        """
        stats = self._create_empty_push_stats()
        if not self._push_lock.acquire(blocking=False):
            logger.debug("Push pass already running, skipping")
            stats["busy"] = True
            return stats

        start_time = time.time()
        try:
            records = self.queue.dequeue_ready()
            if records:
                logger.debug(f"Push pass: {len(records)} queued record(s)")
            for record in records:
                self._push_record(record, stats)
        except RemoteError as e:
            logger.warning(f"Push pass stopped, queue left as is: {e}")
            stats["aborted"] = True
            stats["errors"].append(str(e))
        except LocalStorageError as e:
            logger.error(f"Push pass aborted by local storage error: {e}")
            stats["errors"].append(str(e))
        except Exception as e:
            logger.exception(f"Unexpected error during push pass: {e}")
            stats["errors"].append(str(e))
        finally:
            self._push_lock.release()

        if stats["pushed"] or stats["failed"] or stats["abandoned"]:
            logger.info(
                f"Push pass finished in {time.time() - start_time:.2f}s: "
                f"{stats['pushed']} pushed, {stats['failed']} failed, "
                f"{stats['abandoned']} abandoned"
            )
        return stats

    def _push_record(self, record: MutationRecord, stats: dict) -> None:
        """Send one record and update the queue according to the outcome."""
        if self.queue.is_abandoned(record):
            logger.warning(
                f"Skipping abandoned mutation #{record.sequence_id} "
                f"({record.operation.value} {record.entity_kind.value}/"
                f"{record.entity_id}, {record.retry_count} retries)"
            )
            stats["skipped_abandoned"] += 1
            return

        try:
            self._dispatch(record)
        except RemoteError as e:
            if e.aborts_pass:
                raise
            stats["errors"].append(str(e))
            if e.retriable:
                logger.warning(
                    f"Failed to push mutation #{record.sequence_id} "
                    f"(attempt {record.retry_count + 1}): {e}"
                )
                self.queue.increment_retry(record.sequence_id, str(e))
                stats["failed"] += 1
            else:
                logger.warning(
                    f"Abandoning mutation #{record.sequence_id} after "
                    f"permanent failure: {e}"
                )
                self.queue.abandon(record.sequence_id, str(e))
                stats["abandoned"] += 1
            return
        except (ValueError, TypeError) as e:
            # Malformed payload snapshot
            logger.error(f"Cannot push mutation #{record.sequence_id}: {e}")
            stats["errors"].append(str(e))
            self.queue.increment_retry(record.sequence_id, str(e))
            stats["failed"] += 1
            return

        self.queue.acknowledge(record.sequence_id)
        stats["pushed"] += 1
        logger.debug(
            f"Pushed mutation #{record.sequence_id} "
            f"({record.operation.value} {record.entity_kind.value}/{record.entity_id})"
        )

    def _dispatch(self, record: MutationRecord) -> None:
        """Execute a single mutation against the gateway."""
        kind = record.entity_kind
        payload = clean_payload_for_remote(kind, record.payload)

        if record.operation == OperationKind.CREATE:
            payload.setdefault("id", record.entity_id)
            self.gateway.insert(kind, payload)
        elif record.operation == OperationKind.UPDATE:
            payload.pop("id", None)
            self.gateway.update(kind, record.entity_id, payload)
        elif record.operation == OperationKind.DELETE:
            self.gateway.delete(kind, record.entity_id)
        else:
            raise ValueError(f"Unknown operation: {record.operation}")

    # =========================
    # Pull path
    # =========================

    def _create_empty_pull_stats(self) -> dict:
        return {
            "busy": False,
            "fetched": 0,
            "applied": 0,
            "kept_local": 0,
            "failed_kinds": [],
            "errors": [],
        }

    def pull_remote_changes(self) -> dict:
        """Pull one batch of remote changes per kind, lists first.

        Each kind fetches at most ``batch_size`` rows newer than its
        watermark, merges them through the conflict resolver and then
        advances the watermark. A failing kind keeps its watermark and does
        not prevent the other kind from being pulled.

        Returns:
            Dictionary with pull statistics; ``busy`` is True when another
            pull pass was already running and nothing was done
        """
        stats = self._create_empty_pull_stats()
        if not self._pull_lock.acquire(blocking=False):
            logger.debug("Pull pass already running, skipping")
            stats["busy"] = True
            return stats

        try:
            for kind in PULL_ORDER:
                try:
                    self._pull_kind(kind, stats)
                except (RemoteError, LocalStorageError, ValueError) as e:
                    logger.warning(f"Pull of {kind.value} failed: {e}")
                    stats["failed_kinds"].append(kind.value)
                    stats["errors"].append(str(e))
                except Exception as e:
                    logger.exception(f"Unexpected error pulling {kind.value}: {e}")
                    stats["failed_kinds"].append(kind.value)
                    stats["errors"].append(str(e))
        finally:
            self._pull_lock.release()

        if stats["applied"]:
            logger.info(
                f"Pull pass applied {stats['applied']} remote record(s), "
                f"kept {stats['kept_local']} local"
            )
        return stats

    def _pull_kind(self, kind: EntityKind, stats: dict) -> None:
        """Fetch and merge one batch of a kind, then advance its watermark."""
        since = self.watermarks.get(kind)
        rows = self.gateway.fetch_changes_since(
            kind, since, self.settings.batch_size
        )
        if not rows:
            logger.debug(f"No remote changes for {kind.value} since {since}")
            return

        stats["fetched"] += len(rows)
        latest = since
        for row in rows:
            remote = entity_from_remote(kind, row)
            decision = self._merge_record(kind, remote)
            if decision.apply_remote:
                stats["applied"] += 1
            else:
                stats["kept_local"] += 1
            if remote.updated_at > latest:
                latest = remote.updated_at

        self.watermarks.advance(kind, latest)
        logger.debug(f"Watermark for {kind.value} advanced to {latest}")

    def _merge_record(self, kind: EntityKind, remote: Entity) -> MergeDecision:
        """Resolve one pulled record against the local copy and apply it."""
        decision = self.store.merge_from_remote(remote, self.resolver.merge)
        logger.debug(f"{kind.value}/{remote.id}: {decision.reason}")
        return decision

    # =========================
    # Manual sync
    # =========================

    def sync_now(self) -> dict:
        """Run a push pass followed by a pull pass and report failures.

        Unlike the passive entry points this raises, so that an explicit
        user-initiated sync can show what went wrong.

        Returns:
            Dictionary with ``push`` and ``pull`` statistics

        Raises:
            SyncIncompleteError: If any record failed or any kind could not
                be pulled
        """
        stats: dict[str, Any] = {
            "push": self.process_queue(),
            "pull": self.pull_remote_changes(),
        }
        push, pull = stats["push"], stats["pull"]

        problems = []
        if push["failed"]:
            problems.append(f"{push['failed']} mutation(s) failed to push")
        if push["abandoned"]:
            problems.append(
                f"{push['abandoned']} mutation(s) rejected by the server"
            )
        if push["aborted"]:
            problems.append(f"push stopped: {push['errors'][-1]}")
        if pull["failed_kinds"]:
            problems.append(f"could not pull {', '.join(pull['failed_kinds'])}")
        if not problems and (push["errors"] or pull["errors"]):
            problems.append((push["errors"] or pull["errors"])[0])

        if problems:
            message = "Sync incomplete: " + "; ".join(problems)
            raise SyncIncompleteError(message, stats)
        return stats
