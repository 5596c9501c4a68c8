"""Runtime wiring of sync triggers.

The surrounding application owns its triggers (connectivity changes, app
foregrounding, timers, realtime hints). ``SyncScheduler`` bundles the usual
set so a long-running process only has to call ``start()`` and forward
connectivity and foreground events.
"""

import logging
import threading
from typing import Optional

from ..models import EntityKind
from .engine import SyncEngine
from .gateway import Subscription

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Fires sync passes from timers, change notifications and app events.

    Trigger methods never raise and never wait for a busy pass; a trigger
    arriving while a pass is running is simply dropped by the engine.
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval: float = 30.0,
        subscribe: bool = True,
    ):
        """Initialize the scheduler.

        Args:
            engine: Sync engine to drive
            interval: Seconds between periodic push+pull runs
            subscribe: Whether to pull on gateway change notifications
        """
        self.engine = engine
        self.interval = interval
        self.subscribe = subscribe
        self._stop_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None
        self._subscription: Optional[Subscription] = None

    @property
    def running(self) -> bool:
        return self._timer_thread is not None and self._timer_thread.is_alive()

    def start(self) -> None:
        """Run an initial sync and start the periodic and realtime triggers."""
        if self.running:
            return
        self._stop_event.clear()

        self.sync()

        if self.subscribe:
            try:
                self._subscription = self.engine.gateway.subscribe_to_changes(
                    list(EntityKind), self._on_remote_change
                )
            except Exception as e:
                logger.warning(f"Realtime change subscription unavailable: {e}")
                self._subscription = None

        self._timer_thread = threading.Thread(
            target=self._timer_loop,
            name="ListSyncTimer",
            daemon=True,
        )
        self._timer_thread.start()
        logger.debug(f"Sync scheduler started (interval {self.interval}s)")

    def stop(self) -> None:
        """Stop the timer and cancel the change subscription."""
        self._stop_event.set()
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._timer_thread and self._timer_thread.is_alive():
            self._timer_thread.join(timeout=5)
        self._timer_thread = None
        logger.debug("Sync scheduler stopped")

    def _timer_loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.sync()

    def _on_remote_change(self, kind: EntityKind) -> None:
        logger.debug(f"Remote change hint for {kind.value}, pulling")
        self.engine.pull_remote_changes()

    def sync(self) -> None:
        """Run a push pass and a pull pass, ignoring their outcome."""
        self.engine.process_queue()
        self.engine.pull_remote_changes()

    def notify_network_regained(self) -> None:
        """Connectivity came back: flush the queue and catch up."""
        logger.debug("Network regained, syncing")
        self.sync()

    def notify_foreground(self) -> None:
        """The application became active: flush the queue and catch up."""
        logger.debug("Application foregrounded, syncing")
        self.sync()
