"""Conflict resolution for pulled remote records."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models import Entity


class MergeAction(str, Enum):
    """Outcome of comparing a local and a remote version."""

    APPLY_REMOTE = "apply_remote"
    """Replace the local record with the remote one"""

    KEEP_LOCAL = "keep_local"
    """Leave the local record untouched"""


@dataclass
class MergeDecision:
    """Represents a decision about one pulled record."""

    action: MergeAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    local: Optional[Entity]
    """Local version (if it exists)"""

    remote: Entity
    """Remote version"""

    @property
    def apply_remote(self) -> bool:
        return self.action == MergeAction.APPLY_REMOTE


class ConflictResolver:
    """Last-writer-wins resolver with remote timestamp authority.

    A remote version replaces the local one only when its ``updated_at`` is
    strictly newer. Equal timestamps keep the local copy. The whole record is
    replaced; there is no field-level merge, and cascading deletes are left
    to the storage layer.
    """

    def merge(self, local: Optional[Entity], remote: Entity) -> MergeDecision:
        """Decide whether ``remote`` supersedes ``local``.

        Args:
            local: Local version, or None if the entity was never seen
            remote: Version pulled from the backend

        Returns:
            MergeDecision for this entity
        """
        if local is None:
            return MergeDecision(
                action=MergeAction.APPLY_REMOTE,
                reason="New remote record",
                local=None,
                remote=remote,
            )

        if remote.updated_at > local.updated_at:
            return MergeDecision(
                action=MergeAction.APPLY_REMOTE,
                reason="Remote record is newer",
                local=local,
                remote=remote,
            )

        if remote.updated_at == local.updated_at:
            reason = "Same timestamp, keeping local record"
        else:
            reason = "Local record is newer"
        return MergeDecision(
            action=MergeAction.KEEP_LOCAL,
            reason=reason,
            local=local,
            remote=remote,
        )
