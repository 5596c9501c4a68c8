"""Shared fixtures for pylistsync tests."""

import threading
from datetime import datetime, timedelta
from typing import Any, Optional

import pytest

from pylistsync.database import Database
from pylistsync.exceptions import RemoteError
from pylistsync.models import EntityKind
from pylistsync.storage import LocalStore
from pylistsync.sync.queue import MutationQueue
from pylistsync.utils import EPOCH, format_timestamp, parse_iso_timestamp


def ts(seconds: float) -> datetime:
    """Timestamp ``seconds`` after the epoch."""
    return EPOCH + timedelta(seconds=seconds)


class FakeGateway:
    """In-memory remote store implementing the gateway contract.

    ``fail_next`` queues outcomes of the next write calls: an exception
    to raise, or None to succeed. ``fetch_errors`` maps kinds to exceptions
    raised by fetches.
    """

    def __init__(self):
        self.rows: dict[EntityKind, dict[str, dict[str, Any]]] = {
            kind: {} for kind in EntityKind
        }
        self.calls: list[tuple] = []
        self.fail_next: list[Optional[Exception]] = []
        self.fetch_errors: dict[EntityKind, Exception] = {}
        self.block_event: Optional[threading.Event] = None
        self.entered_event = threading.Event()
        self.subscriptions: list = []

    def _before_write(self) -> None:
        if self.block_event is not None:
            self.entered_event.set()
            self.block_event.wait(5)
        if self.fail_next:
            error = self.fail_next.pop(0)
            if error is not None:
                raise error

    def insert(self, kind, record):
        self.calls.append(("insert", kind, record["id"], dict(record)))
        self._before_write()
        self.rows[kind][record["id"]] = dict(record)

    def update(self, kind, entity_id, partial_record):
        self.calls.append(("update", kind, entity_id, dict(partial_record)))
        self._before_write()
        if entity_id in self.rows[kind]:
            self.rows[kind][entity_id].update(partial_record)

    def delete(self, kind, entity_id):
        self.calls.append(("delete", kind, entity_id, {}))
        self._before_write()
        self.rows[kind].pop(entity_id, None)

    def fetch_changes_since(self, kind, timestamp, limit):
        self.calls.append(("fetch", kind, timestamp, limit))
        if self.block_event is not None:
            self.entered_event.set()
            self.block_event.wait(5)
        if kind in self.fetch_errors:
            raise self.fetch_errors[kind]
        rows = [
            dict(row)
            for row in self.rows[kind].values()
            if parse_iso_timestamp(row["updated_at"]) > timestamp
        ]
        rows.sort(key=lambda row: parse_iso_timestamp(row["updated_at"]))
        return rows[:limit]

    def subscribe_to_changes(self, kinds, callback):
        subscription = FakeSubscription(callback)
        self.subscriptions.append(subscription)
        return subscription

    def put(self, kind: EntityKind, **row: Any) -> dict[str, Any]:
        """Seed a remote row directly."""
        if isinstance(row.get("updated_at"), datetime):
            row["updated_at"] = format_timestamp(row["updated_at"])
        self.rows[kind][row["id"]] = row
        return row

    def writes(self) -> list[tuple]:
        return [call for call in self.calls if call[0] != "fetch"]


class FakeSubscription:
    def __init__(self, callback):
        self.callback = callback
        self.closed = False

    def close(self):
        self.closed = True


def transient_error(message: str = "connection reset") -> RemoteError:
    return RemoteError(message, retriable=True)


def permanent_error(message: str = "violates check constraint") -> RemoteError:
    return RemoteError(message, retriable=False, status_code=400)


@pytest.fixture
def db():
    """Provide an in-memory database."""
    database = Database()
    yield database
    database.close()


@pytest.fixture
def queue(db):
    return MutationQueue(db)


@pytest.fixture
def store(db, queue):
    return LocalStore(db, queue)


@pytest.fixture
def gateway():
    return FakeGateway()
