"""Pull watermark tracking.

The watermark of an entity kind is the newest ``updated_at`` among remote
records pulled so far. By default watermarks live only in memory and start at
the epoch, so every process restart rescans the catalogue in bounded batches.
``WatermarkStateManager`` can persist them between runs.
"""

import hashlib
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..models import EntityKind
from ..utils import EPOCH, format_timestamp, parse_iso_timestamp

logger = logging.getLogger(__name__)


class WatermarkStateManager:
    """Persists watermarks as JSON, keyed by backend URL.

    The state is stored in the user's config directory so that several
    backends can be synced from the same machine.
    """

    def __init__(self, state_dir: Path, api_url: str):
        """Initialize state manager.

        Args:
            state_dir: Directory to store state files
            api_url: Backend URL the watermarks belong to
        """
        self.state_dir = state_dir
        self.api_url = api_url
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _get_state_file(self) -> Path:
        key = hashlib.sha256(self.api_url.encode()).hexdigest()[:16]
        return self.state_dir / f"{key}.json"

    def load(self) -> dict[EntityKind, datetime]:
        """Load persisted watermarks.

        Returns:
            Watermarks found on disk; missing or unreadable state yields {}
        """
        state_file = self._get_state_file()
        if not state_file.exists():
            logger.debug(f"No watermark state found at {state_file}")
            return {}

        try:
            with open(state_file, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load watermark state: {e}")
            return {}

        watermarks: dict[EntityKind, datetime] = {}
        for kind in EntityKind:
            parsed = parse_iso_timestamp(data.get("watermarks", {}).get(kind.value))
            if parsed is not None:
                watermarks[kind] = parsed
        return watermarks

    def save(self, watermarks: dict[EntityKind, datetime]) -> None:
        """Save watermarks. Failures are logged, not raised."""
        data = {
            "api_url": self.api_url,
            "watermarks": {
                kind.value: format_timestamp(value)
                for kind, value in watermarks.items()
            },
        }
        state_file = self._get_state_file()
        try:
            with open(state_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to save watermark state: {e}")

    def clear(self) -> bool:
        """Delete persisted watermarks.

        Returns:
            True if state was cleared, False if no state existed
        """
        state_file = self._get_state_file()
        if state_file.exists():
            state_file.unlink()
            logger.debug(f"Cleared watermark state at {state_file}")
            return True
        return False


class WatermarkTracker:
    """Per-kind pull watermarks, monotonically non-decreasing."""

    def __init__(self, state_manager: Optional[WatermarkStateManager] = None):
        self._lock = threading.Lock()
        self._state_manager = state_manager
        self._watermarks: dict[EntityKind, datetime] = {
            kind: EPOCH for kind in EntityKind
        }
        if state_manager is not None:
            self._watermarks.update(state_manager.load())

    def get(self, kind: EntityKind) -> datetime:
        """Return the watermark of a kind."""
        with self._lock:
            return self._watermarks[EntityKind(kind)]

    def advance(self, kind: EntityKind, value: datetime) -> datetime:
        """Move a watermark forward.

        Values older than the current watermark are ignored.

        Returns:
            The watermark after the update
        """
        kind = EntityKind(kind)
        with self._lock:
            if value > self._watermarks[kind]:
                self._watermarks[kind] = value
                if self._state_manager is not None:
                    self._state_manager.save(dict(self._watermarks))
            return self._watermarks[kind]

    def reset(self) -> None:
        """Rewind every kind to the epoch."""
        with self._lock:
            self._watermarks = {kind: EPOCH for kind in EntityKind}
            if self._state_manager is not None:
                self._state_manager.clear()

    def as_dict(self) -> dict[str, str]:
        """Watermarks as ISO strings keyed by kind name."""
        with self._lock:
            return {
                kind.value: format_timestamp(value)
                for kind, value in self._watermarks.items()
            }
