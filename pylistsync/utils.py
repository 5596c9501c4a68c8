"""Utility functions for pylistsync."""

import uuid
from datetime import datetime, timezone
from typing import Optional

# =============================================================================
# Constants for sync operations
# =============================================================================

# Push attempts before a mutation record is abandoned
MAX_RETRIES: int = 5

# Rows fetched per entity kind in one pull pass
SYNC_BATCH_SIZE: int = 50

# In-call retry configuration for transient HTTP errors
DEFAULT_HTTP_RETRIES: int = 2
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Starting watermark for every entity kind
EPOCH: datetime = datetime(1970, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# Timestamp utilities
# =============================================================================


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO format timestamp from the backend or local database.

    Args:
        timestamp_str: ISO format timestamp (e.g., "2025-01-15T10:30:00.000000Z")

    Returns:
        Timezone-aware UTC datetime, or None if parsing fails. Naive values
        are taken to be UTC.

    Examples:
        >>> parse_iso_timestamp("2025-01-15T10:30:00Z").isoformat()
        '2025-01-15T10:30:00+00:00'
        >>> parse_iso_timestamp("garbage") is None
        True
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
    except (ValueError, AttributeError, TypeError):
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string.

    Examples:
        >>> format_timestamp(EPOCH)
        '1970-01-01T00:00:00+00:00'
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def coerce_timestamp(value: object) -> datetime:
    """Convert a datetime or ISO string into a UTC datetime.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, str):
        parsed = parse_iso_timestamp(value)
        if parsed is not None:
            return parsed
    raise ValueError(f"Invalid timestamp: {value!r}")


# =============================================================================
# Identifier utilities
# =============================================================================


def new_entity_id() -> str:
    """Generate a client-side globally unique entity identifier."""
    return str(uuid.uuid4())
