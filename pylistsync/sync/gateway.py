"""Contract between the sync engine and the remote store.

The engine only depends on ``RemoteGateway``; ``pylistsync.api.RemoteClient``
is the HTTP implementation. Change notifications are hints: they may arrive
twice, late or never, and carry no payload the engine relies on.
"""

import logging
import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from ..exceptions import RemoteError
from ..models import EntityKind

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[EntityKind], None]


class Subscription(Protocol):
    """Handle returned by ``subscribe_to_changes``."""

    def close(self) -> None: ...


class RemoteGateway(Protocol):
    """Operations the sync engine needs from the remote store.

    Every operation raises ``RemoteError`` on failure; success is
    unambiguous.
    """

    def insert(self, kind: EntityKind, record: dict[str, Any]) -> None: ...

    def update(
        self, kind: EntityKind, entity_id: str, partial_record: dict[str, Any]
    ) -> None: ...

    def delete(self, kind: EntityKind, entity_id: str) -> None: ...

    def fetch_changes_since(
        self, kind: EntityKind, timestamp: datetime, limit: int
    ) -> list[dict[str, Any]]: ...

    def subscribe_to_changes(
        self, kinds: Iterable[EntityKind], callback: ChangeCallback
    ) -> Subscription: ...


class ChangePoller:
    """Best-effort change notifier built on polling.

    A daemon thread periodically asks ``probe(kind)`` for the newest remote
    ``updated_at`` of each kind and invokes the callback when it moves. The
    first observation only sets the baseline.
    """

    def __init__(
        self,
        probe: Callable[[EntityKind], Optional[datetime]],
        kinds: Iterable[EntityKind],
        callback: ChangeCallback,
        interval: float = 30.0,
    ):
        """Initialize the poller.

        Args:
            probe: Returns the newest remote updated_at of a kind (or None)
            kinds: Entity kinds to watch
            callback: Invoked with the kind whose data changed
            interval: Seconds between polls
        """
        self._probe = probe
        self._kinds = [EntityKind(kind) for kind in kinds]
        self._callback = callback
        self.interval = interval
        self._last_seen: dict[EntityKind, Optional[datetime]] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "ChangePoller":
        """Start the polling thread."""
        self._thread = threading.Thread(
            target=self._poll_loop,
            name="ListSyncChangePoller",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Change poller started")
        return self

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            self.poll_once()
            self._stop_event.wait(self.interval)

    def poll_once(self) -> list[EntityKind]:
        """Check every kind once and notify about the ones that changed.

        Returns:
            Kinds for which the callback was invoked
        """
        changed: list[EntityKind] = []
        for kind in self._kinds:
            try:
                latest = self._probe(kind)
            except RemoteError as e:
                logger.debug(f"Change poll for {kind.value} failed: {e}")
                continue

            if kind not in self._last_seen:
                self._last_seen[kind] = latest
                continue
            if latest == self._last_seen[kind]:
                continue

            self._last_seen[kind] = latest
            changed.append(kind)
            try:
                self._callback(kind)
            except Exception as e:
                logger.error(f"Change callback for {kind.value} failed: {e}")
        return changed

    def close(self) -> None:
        """Stop the polling thread."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.debug("Change poller stopped")
