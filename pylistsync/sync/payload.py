"""Outgoing payload normalization."""

import logging
from datetime import datetime
from typing import Any

from ..models import FIELD_MAP, LOCAL_ONLY_FIELDS, EntityKind
from ..utils import format_timestamp

logger = logging.getLogger(__name__)


def clean_payload_for_remote(
    kind: EntityKind, payload: dict[str, Any]
) -> dict[str, Any]:
    """Prepare a queued payload for transmission.

    Keys are mapped to remote column names through the kind's static field
    table, local-only fields are removed, and datetimes are serialized.
    ``sync_version`` is kept because it exists on the server.

    Args:
        kind: Entity kind the payload belongs to
        payload: Snapshot stored in the mutation record

    Returns:
        Flat dictionary keyed by remote column names

    Examples:
        >>> clean_payload_for_remote(
        ...     EntityKind.ITEMS, {"listId": "L1", "isSynced": False, "syncVersion": 2}
        ... )
        {'list_id': 'L1', 'sync_version': 2}
    """
    field_map = FIELD_MAP[EntityKind(kind)]
    cleaned: dict[str, Any] = {}

    for key, value in payload.items():
        column = field_map.get(key)
        if column is None:
            logger.warning(f"Dropping unknown field {key!r} from {kind.value} payload")
            continue
        if column in LOCAL_ONLY_FIELDS:
            continue
        if isinstance(value, datetime):
            value = format_timestamp(value)
        cleaned[column] = value

    return cleaned
