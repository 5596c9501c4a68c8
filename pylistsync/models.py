"""Data models for synchronized entities and queued mutations."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from .utils import coerce_timestamp, format_timestamp, parse_iso_timestamp, utcnow


class EntityKind(str, Enum):
    """Synchronized entity types and their remote collections."""

    LISTS = "lists"
    """Shopping lists"""

    ITEMS = "items"
    """Items belonging to a shopping list"""

    @property
    def collection(self) -> str:
        """Remote collection (table) name."""
        return self.value

    @property
    def entity_class(self) -> type:
        """Dataclass used for rows of this kind."""
        return ShoppingList if self is EntityKind.LISTS else ListItem


class OperationKind(str, Enum):
    """Kinds of local write intents."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


CATEGORIES = (
    "produce",
    "dairy",
    "meat",
    "bakery",
    "frozen",
    "pantry",
    "beverages",
    "household",
    "personal_care",
    "other",
)

# Field that exists only on the device and is never transmitted
LOCAL_ONLY_FIELDS = frozenset({"is_synced"})

LIST_COLUMNS = (
    "id",
    "name",
    "owner_id",
    "store_id",
    "store_name",
    "color",
    "budget",
    "is_archived",
    "created_at",
    "updated_at",
    "sync_version",
    "is_synced",
)

ITEM_COLUMNS = (
    "id",
    "list_id",
    "name",
    "category",
    "quantity",
    "unit",
    "price",
    "notes",
    "is_checked",
    "is_in_pantry",
    "added_by",
    "checked_by",
    "created_at",
    "updated_at",
    "sync_version",
    "is_synced",
)

# Application attribute name -> remote column name, per entity kind.
# Both the camelCase spelling used by app payloads and the column name
# itself are accepted.
_COMMON_FIELD_MAP = {
    "id": "id",
    "name": "name",
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "syncVersion": "sync_version",
    "sync_version": "sync_version",
    "isSynced": "is_synced",
    "is_synced": "is_synced",
}

FIELD_MAP: dict[EntityKind, dict[str, str]] = {
    EntityKind.LISTS: {
        **_COMMON_FIELD_MAP,
        "ownerId": "owner_id",
        "owner_id": "owner_id",
        "storeId": "store_id",
        "store_id": "store_id",
        "storeName": "store_name",
        "store_name": "store_name",
        "color": "color",
        "budget": "budget",
        "isArchived": "is_archived",
        "is_archived": "is_archived",
    },
    EntityKind.ITEMS: {
        **_COMMON_FIELD_MAP,
        "listId": "list_id",
        "list_id": "list_id",
        "category": "category",
        "quantity": "quantity",
        "unit": "unit",
        "price": "price",
        "notes": "notes",
        "isChecked": "is_checked",
        "is_checked": "is_checked",
        "isInPantry": "is_in_pantry",
        "is_in_pantry": "is_in_pantry",
        "addedBy": "added_by",
        "added_by": "added_by",
        "checkedBy": "checked_by",
        "checked_by": "checked_by",
    },
}


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class ShoppingList:
    """A shopping list."""

    id: str
    name: str
    owner_id: str = ""
    store_id: Optional[str] = None
    store_name: Optional[str] = None
    color: str = "#4CAF50"
    budget: Optional[float] = None
    is_archived: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    sync_version: int = 0
    is_synced: bool = False

    kind = EntityKind.LISTS

    def to_record(self) -> dict[str, Any]:
        """Flat column dictionary with ISO timestamps."""
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "store_id": self.store_id,
            "store_name": self.store_name,
            "color": self.color,
            "budget": self.budget,
            "is_archived": self.is_archived,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "sync_version": self.sync_version,
            "is_synced": self.is_synced,
        }

    @classmethod
    def from_record(
        cls, data: Any, is_synced: Optional[bool] = None
    ) -> "ShoppingList":
        """Create a ShoppingList from a remote row or a local database row.

        Args:
            data: Mapping with column names as keys
            is_synced: Override for the local-only sync flag

        Raises:
            ValueError: If required fields are missing or malformed
        """
        data = dict(data)
        try:
            entity_id = data["id"]
            name = data["name"]
            updated_at = coerce_timestamp(data["updated_at"])
        except KeyError as e:
            raise ValueError(f"List record is missing field {e}") from e

        return cls(
            id=str(entity_id),
            name=name,
            owner_id=data.get("owner_id") or "",
            store_id=data.get("store_id"),
            store_name=data.get("store_name"),
            color=data.get("color") or "#4CAF50",
            budget=_optional_float(data.get("budget")),
            is_archived=bool(data.get("is_archived")),
            created_at=coerce_timestamp(data.get("created_at") or updated_at),
            updated_at=updated_at,
            sync_version=int(data.get("sync_version") or 0),
            is_synced=(
                bool(data.get("is_synced")) if is_synced is None else is_synced
            ),
        )


@dataclass
class ListItem:
    """An item on a shopping list."""

    id: str
    list_id: str
    name: str
    category: str = "other"
    quantity: Optional[float] = None
    unit: Optional[str] = None
    price: Optional[float] = None
    notes: Optional[str] = None
    is_checked: bool = False
    is_in_pantry: bool = False
    added_by: Optional[str] = None
    checked_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    sync_version: int = 0
    is_synced: bool = False

    kind = EntityKind.ITEMS

    def to_record(self) -> dict[str, Any]:
        """Flat column dictionary with ISO timestamps."""
        return {
            "id": self.id,
            "list_id": self.list_id,
            "name": self.name,
            "category": self.category,
            "quantity": self.quantity,
            "unit": self.unit,
            "price": self.price,
            "notes": self.notes,
            "is_checked": self.is_checked,
            "is_in_pantry": self.is_in_pantry,
            "added_by": self.added_by,
            "checked_by": self.checked_by,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "sync_version": self.sync_version,
            "is_synced": self.is_synced,
        }

    @classmethod
    def from_record(
        cls, data: Any, is_synced: Optional[bool] = None
    ) -> "ListItem":
        """Create a ListItem from a remote row or a local database row.

        Unknown categories fall back to ``other``.

        Raises:
            ValueError: If required fields are missing or malformed
        """
        data = dict(data)
        try:
            entity_id = data["id"]
            list_id = data["list_id"]
            name = data["name"]
            updated_at = coerce_timestamp(data["updated_at"])
        except KeyError as e:
            raise ValueError(f"Item record is missing field {e}") from e

        category = data.get("category")
        if category not in CATEGORIES:
            category = "other"

        return cls(
            id=str(entity_id),
            list_id=str(list_id),
            name=name,
            category=category,
            quantity=_optional_float(data.get("quantity")),
            unit=data.get("unit"),
            price=_optional_float(data.get("price")),
            notes=data.get("notes"),
            is_checked=bool(data.get("is_checked")),
            is_in_pantry=bool(data.get("is_in_pantry")),
            added_by=data.get("added_by"),
            checked_by=data.get("checked_by"),
            created_at=coerce_timestamp(data.get("created_at") or updated_at),
            updated_at=updated_at,
            sync_version=int(data.get("sync_version") or 0),
            is_synced=(
                bool(data.get("is_synced")) if is_synced is None else is_synced
            ),
        )


Entity = Union[ShoppingList, ListItem]


def entity_from_remote(kind: EntityKind, row: dict[str, Any]) -> Entity:
    """Build the entity for a pulled remote row, marked as synced."""
    return kind.entity_class.from_record(row, is_synced=True)


@dataclass
class MutationRecord:
    """A queued local write intent awaiting transmission."""

    sequence_id: int
    """Monotonic id assigned at enqueue time"""

    operation: OperationKind
    """CREATE, UPDATE or DELETE"""

    entity_kind: EntityKind
    """Kind of the target entity"""

    entity_id: str
    """Identifier of the target entity"""

    payload: dict[str, Any]
    """Snapshot of the entity (full or partial) at enqueue time"""

    enqueued_at: datetime
    """When the intent was recorded"""

    retry_count: int = 0
    """Failed push attempts so far"""

    last_error: Optional[str] = None
    """Message of the most recent failure"""

    abandoned: bool = False
    """Set when a permanent failure made the record inert"""

    @classmethod
    def from_row(cls, row: Any, payload: dict[str, Any]) -> "MutationRecord":
        """Create a MutationRecord from a sync_queue row."""
        enqueued_at = parse_iso_timestamp(row["enqueued_at"]) or utcnow()
        return cls(
            sequence_id=row["sequence_id"],
            operation=OperationKind(row["operation"]),
            entity_kind=EntityKind(row["entity_kind"]),
            entity_id=row["entity_id"],
            payload=payload,
            enqueued_at=enqueued_at,
            retry_count=row["retry_count"],
            last_error=row["last_error"],
            abandoned=bool(row["abandoned"]),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for JSON output."""
        return {
            "sequence_id": self.sequence_id,
            "operation": self.operation.value,
            "entity_kind": self.entity_kind.value,
            "entity_id": self.entity_id,
            "payload": self.payload,
            "enqueued_at": format_timestamp(self.enqueued_at),
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "abandoned": self.abandoned,
        }
