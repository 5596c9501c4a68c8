"""Tests for the sync trigger scheduler and the change poller."""

import threading
from unittest.mock import Mock

import pytest
from conftest import ts

from pylistsync.exceptions import RemoteError
from pylistsync.models import EntityKind
from pylistsync.sync import ChangePoller, SyncEngine, SyncScheduler


@pytest.fixture
def mock_engine(gateway):
    engine = Mock(spec=SyncEngine)
    engine.gateway = gateway
    return engine


class TestSyncScheduler:
    """Tests for SyncScheduler."""

    def test_start_runs_initial_sync_and_subscribes(self, mock_engine, gateway):
        scheduler = SyncScheduler(mock_engine, interval=60)
        scheduler.start()
        try:
            mock_engine.process_queue.assert_called_once()
            mock_engine.pull_remote_changes.assert_called_once()
            assert len(gateway.subscriptions) == 1
            assert scheduler.running is True
        finally:
            scheduler.stop()

    def test_change_notification_triggers_pull(self, mock_engine, gateway):
        scheduler = SyncScheduler(mock_engine, interval=60)
        scheduler.start()
        try:
            mock_engine.reset_mock()
            gateway.subscriptions[0].callback(EntityKind.ITEMS)

            mock_engine.pull_remote_changes.assert_called_once()
            mock_engine.process_queue.assert_not_called()
        finally:
            scheduler.stop()

    def test_stop_closes_subscription(self, mock_engine, gateway):
        scheduler = SyncScheduler(mock_engine, interval=60)
        scheduler.start()
        scheduler.stop()

        assert gateway.subscriptions[0].closed is True
        assert scheduler.running is False

    def test_periodic_timer(self, mock_engine):
        """Test that the timer keeps triggering push and pull."""
        done = threading.Event()
        calls = []

        def record_push():
            calls.append("push")
            if len(calls) >= 3:
                done.set()

        mock_engine.process_queue.side_effect = record_push
        scheduler = SyncScheduler(mock_engine, interval=0.01, subscribe=False)
        scheduler.start()
        try:
            assert done.wait(5)
        finally:
            scheduler.stop()

    def test_network_and_foreground_triggers(self, mock_engine):
        scheduler = SyncScheduler(mock_engine)
        scheduler.notify_network_regained()
        scheduler.notify_foreground()

        assert mock_engine.process_queue.call_count == 2
        assert mock_engine.pull_remote_changes.call_count == 2

    def test_subscription_failure_is_tolerated(self, mock_engine, gateway):
        gateway.subscribe_to_changes = Mock(side_effect=RemoteError("no realtime"))
        scheduler = SyncScheduler(mock_engine, interval=60)
        scheduler.start()
        try:
            assert scheduler.running is True
        finally:
            scheduler.stop()

    def test_start_twice_is_noop(self, mock_engine, gateway):
        scheduler = SyncScheduler(mock_engine, interval=60)
        scheduler.start()
        scheduler.start()
        try:
            assert len(gateway.subscriptions) == 1
            mock_engine.process_queue.assert_called_once()
        finally:
            scheduler.stop()


class TestChangePoller:
    """Tests for the polling change notifier."""

    def test_first_poll_sets_baseline(self):
        callback = Mock()
        poller = ChangePoller(lambda kind: ts(10), [EntityKind.LISTS], callback)

        assert poller.poll_once() == []
        callback.assert_not_called()

    def test_change_is_reported(self):
        latest = {EntityKind.LISTS: ts(10), EntityKind.ITEMS: ts(10)}
        callback = Mock()
        poller = ChangePoller(latest.get, list(latest), callback)
        poller.poll_once()

        latest[EntityKind.ITEMS] = ts(20)

        assert poller.poll_once() == [EntityKind.ITEMS]
        callback.assert_called_once_with(EntityKind.ITEMS)
        assert poller.poll_once() == []

    def test_probe_errors_are_ignored(self):
        probe = Mock(side_effect=RemoteError("offline"))
        poller = ChangePoller(probe, [EntityKind.LISTS], Mock())
        assert poller.poll_once() == []

    def test_callback_errors_are_contained(self):
        latest = {EntityKind.LISTS: None}
        poller = ChangePoller(
            latest.get, [EntityKind.LISTS], Mock(side_effect=RuntimeError("boom"))
        )
        poller.poll_once()
        latest[EntityKind.LISTS] = ts(1)

        assert poller.poll_once() == [EntityKind.LISTS]
