"""Offline sync for pylistsync: mutation queue, push/pull, conflict resolution."""

from .engine import PULL_ORDER, EntityStore, SyncEngine
from .gateway import ChangePoller, RemoteGateway, Subscription
from .payload import clean_payload_for_remote
from .queue import MutationQueue
from .resolver import ConflictResolver, MergeAction, MergeDecision
from .state import WatermarkStateManager, WatermarkTracker
from .triggers import SyncScheduler

__all__ = [
    "SyncEngine",
    "EntityStore",
    "PULL_ORDER",
    "RemoteGateway",
    "Subscription",
    "ChangePoller",
    "MutationQueue",
    "ConflictResolver",
    "MergeAction",
    "MergeDecision",
    "WatermarkTracker",
    "WatermarkStateManager",
    "SyncScheduler",
    "clean_payload_for_remote",
]
